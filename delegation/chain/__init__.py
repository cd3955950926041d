"""On-chain access for the assignment contract and randomness oracle."""

from .abi import ASSIGNMENT_ABI, ENTROPY_ABI
from .client import (
    ChainClient,
    ChainError,
    TransactionError,
    TransactionFailure,
    UnsupportedChainError,
    classify_transaction_error,
    generate_salt,
)

__all__ = [
    "ASSIGNMENT_ABI",
    "ENTROPY_ABI",
    "ChainClient",
    "ChainError",
    "TransactionError",
    "TransactionFailure",
    "UnsupportedChainError",
    "classify_transaction_error",
    "generate_salt",
]
