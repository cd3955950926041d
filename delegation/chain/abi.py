"""Minimal ABIs for the assignment contract and the randomness oracle."""

from __future__ import annotations

ASSIGNMENT_ABI = [
    {
        "inputs": [
            {"internalType": "bytes32", "name": "role", "type": "bytes32"},
            {"internalType": "address", "name": "account", "type": "address"},
        ],
        "name": "hasRole",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "ADMIN_ROLE",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "string", "name": "taskId", "type": "string"},
            {"internalType": "address[]", "name": "eligibleMembers", "type": "address[]"},
            {"internalType": "bytes32", "name": "userRandomNumber", "type": "bytes32"},
        ],
        "name": "assignTask",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": "string", "name": "taskId", "type": "string"},
            {"indexed": False, "internalType": "address", "name": "assignedTo", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "randomIndex", "type": "uint256"},
        ],
        "name": "TaskAssigned",
        "type": "event",
    },
]

ENTROPY_ABI = [
    {
        "inputs": [],
        "name": "getFee",
        "outputs": [{"internalType": "uint256", "name": "feeAmount", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]
