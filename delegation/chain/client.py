"""web3.py client for the assignment contract and the randomness oracle."""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence

from web3 import Web3
from web3.exceptions import ContractLogicError

from ..config import ChainDeployment, EngineSettings
from .abi import ASSIGNMENT_ABI, ENTROPY_ABI

logger = logging.getLogger(__name__)

# EIP-1193 "User Rejected Request".
_USER_REJECTED_CODE = 4001
_DECLINED_PATTERN = re.compile(r"(reject|denied|cancel)", re.IGNORECASE)
_REVERT_PATTERN = re.compile(r"revert", re.IGNORECASE)


class ChainError(RuntimeError):
    """Base class for failures talking to the chain."""


class UnsupportedChainError(ChainError):
    """Raised when no deployment is configured for a chain id."""

    def __init__(self, chain_id: int, what: str = "Contract") -> None:
        super().__init__(f"{what} not deployed on chain {chain_id}")
        self.chain_id = chain_id


class TransactionFailure(str, Enum):
    USER_DECLINED = "user_declined"
    REVERTED = "reverted"
    NETWORK = "network"


class TransactionError(ChainError):
    """Raised when simulating or submitting a transaction fails."""

    def __init__(self, message: str, *, failure: TransactionFailure, stage: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.failure = failure
        self.stage = stage
        self.code = code

    @property
    def user_declined(self) -> bool:
        return self.failure is TransactionFailure.USER_DECLINED

    @classmethod
    def from_exception(cls, exc: BaseException, *, stage: str) -> "TransactionError":
        if isinstance(exc, TransactionError):
            return exc
        return cls(
            _error_message(exc),
            failure=classify_transaction_error(exc),
            stage=stage,
            code=_error_code(exc),
        )


def _error_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    rpc_response = getattr(exc, "rpc_response", None)
    if isinstance(rpc_response, dict):
        error = rpc_response.get("error")
        if isinstance(error, dict) and isinstance(error.get("code"), int):
            return error["code"]
    for arg in getattr(exc, "args", ()):
        if isinstance(arg, dict) and isinstance(arg.get("code"), int):
            return arg["code"]
    return None


def _error_message(exc: BaseException) -> str:
    for arg in getattr(exc, "args", ()):
        if isinstance(arg, dict) and arg.get("message"):
            return str(arg["message"])
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc) or type(exc).__name__


def classify_transaction_error(exc: BaseException) -> TransactionFailure:
    """Decide whether a wallet/RPC failure was a refusal, a revert or a transport error."""

    if isinstance(exc, TransactionError):
        return exc.failure
    if _error_code(exc) == _USER_REJECTED_CODE:
        return TransactionFailure.USER_DECLINED
    if isinstance(exc, ContractLogicError):
        return TransactionFailure.REVERTED
    message = _error_message(exc)
    if _REVERT_PATTERN.search(message):
        return TransactionFailure.REVERTED
    if _DECLINED_PATTERN.search(message):
        return TransactionFailure.USER_DECLINED
    return TransactionFailure.NETWORK


def generate_salt(task_id: str, rng: Optional[random.Random] = None) -> bytes:
    """User-supplied entropy for the oracle; unpredictable, not cryptographic."""

    source = rng or random
    millis = int(time.time() * 1000)
    return bytes(Web3.keccak(text=f"{task_id}-{millis}-{source.random()}"))


def _default_web3_factory(deployment: ChainDeployment) -> Web3:
    if not deployment.rpc_url:
        raise ChainError(f"RPC URL not configured for chain {deployment.chain_id}")
    return Web3(Web3.HTTPProvider(deployment.rpc_url, request_kwargs={"timeout": 30}))


class ChainClient:
    """Async facade over the assignment contract and the oracle, one Web3 per chain.

    web3.py is synchronous, so every RPC runs in a worker thread.
    """

    def __init__(
        self,
        settings: EngineSettings,
        *,
        web3_factory: Optional[Callable[[ChainDeployment], Web3]] = None,
        signer: Any = None,
    ) -> None:
        self._settings = settings
        self._web3_factory = web3_factory or _default_web3_factory
        self._signer = signer
        self._web3: Dict[int, Web3] = {}

    def deployment(self, chain_id: int) -> ChainDeployment:
        deployment = self._settings.deployment(chain_id)
        if deployment is None:
            raise UnsupportedChainError(chain_id)
        return deployment

    def supports(self, chain_id: int) -> bool:
        return self._settings.deployment(chain_id) is not None

    def web3(self, chain_id: int) -> Web3:
        instance = self._web3.get(chain_id)
        if instance is None:
            instance = self._web3_factory(self.deployment(chain_id))
            self._web3[chain_id] = instance
        return instance

    def assignment_contract(self, chain_id: int):
        deployment = self.deployment(chain_id)
        return self.web3(chain_id).eth.contract(
            address=Web3.to_checksum_address(deployment.contract_address), abi=ASSIGNMENT_ABI
        )

    def entropy_contract(self, chain_id: int):
        deployment = self._settings.deployment(chain_id)
        if deployment is None:
            raise UnsupportedChainError(chain_id, what="Randomness oracle")
        return self.web3(chain_id).eth.contract(
            address=Web3.to_checksum_address(deployment.entropy_address), abi=ENTROPY_ABI
        )

    def _assign_call(self, chain_id: int, task_id: str, members: Sequence[str], salt: bytes):
        contract = self.assignment_contract(chain_id)
        addresses = [Web3.to_checksum_address(address) for address in members]
        return contract.functions.assignTask(task_id, addresses, salt)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    async def entropy_fee(self, chain_id: int) -> int:
        contract = self.entropy_contract(chain_id)
        fee = await asyncio.to_thread(contract.functions.getFee().call)
        return int(fee)

    async def gas_price(self, chain_id: int) -> int:
        w3 = self.web3(chain_id)
        return int(await asyncio.to_thread(lambda: w3.eth.gas_price))

    async def has_role(self, chain_id: int, role_id: bytes, address: str) -> bool:
        contract = self.assignment_contract(chain_id)
        call = contract.functions.hasRole(role_id, Web3.to_checksum_address(address))
        return bool(await asyncio.to_thread(call.call))

    async def admin_role(self, chain_id: int) -> str:
        contract = self.assignment_contract(chain_id)
        role = await asyncio.to_thread(contract.functions.ADMIN_ROLE().call)
        return Web3.to_hex(role)

    async def estimate_assignment_gas(
        self,
        chain_id: int,
        task_id: str,
        members: Sequence[str],
        salt: bytes,
        *,
        account: Optional[str] = None,
        value: int = 0,
    ) -> int:
        call = self._assign_call(chain_id, task_id, members, salt)
        params: Dict[str, Any] = {"value": value}
        if account:
            params["from"] = Web3.to_checksum_address(account)
        return int(await asyncio.to_thread(call.estimate_gas, params))

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    async def simulate_assignment(
        self,
        chain_id: int,
        task_id: str,
        members: Sequence[str],
        salt: bytes,
        *,
        account: str,
        value: int,
    ) -> None:
        """Dry-run ``assignTask`` against current state; raises :class:`TransactionError`."""

        self.deployment(chain_id)
        try:
            call = self._assign_call(chain_id, task_id, members, salt)
            await asyncio.to_thread(call.call, {"from": Web3.to_checksum_address(account), "value": value})
        except Exception as exc:
            error = TransactionError.from_exception(exc, stage="simulation")
            logger.warning("Contract simulation failed: %s", error)
            raise error from exc

    async def submit_assignment(
        self,
        chain_id: int,
        task_id: str,
        members: Sequence[str],
        salt: bytes,
        *,
        account: str,
        value: int,
    ) -> str:
        """Send ``assignTask`` and return the hash once the network accepts it."""

        self.deployment(chain_id)
        try:
            call = self._assign_call(chain_id, task_id, members, salt)
            sender = Web3.to_checksum_address(account)
            if self._signer is not None and self._signer.address == sender:
                tx_hash = await self._send_signed(chain_id, call, sender, value)
            else:
                tx_hash = await asyncio.to_thread(call.transact, {"from": sender, "value": value})
        except Exception as exc:
            error = TransactionError.from_exception(exc, stage="submission")
            logger.error("Failed to submit task assignment: %s", error)
            raise error from exc
        return Web3.to_hex(tx_hash)

    async def _send_signed(self, chain_id: int, call: Any, sender: str, value: int) -> Any:
        w3 = self.web3(chain_id)
        nonce = await asyncio.to_thread(w3.eth.get_transaction_count, sender)
        tx = await asyncio.to_thread(
            call.build_transaction, {"from": sender, "value": value, "nonce": nonce, "chainId": chain_id}
        )
        signed = await asyncio.to_thread(self._signer.sign_transaction, tx)
        raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")
        return await asyncio.to_thread(w3.eth.send_raw_transaction, raw)

    # ------------------------------------------------------------------
    # events
    # ------------------------------------------------------------------
    def task_assigned_filter(self, chain_id: int):
        contract = self.assignment_contract(chain_id)
        return contract.events.TaskAssigned.create_filter(from_block="latest")

    def uninstall_filter(self, chain_id: int, log_filter: Any) -> bool:
        return bool(self.web3(chain_id).eth.uninstall_filter(log_filter.filter_id))


__all__ = [
    "ChainClient",
    "ChainError",
    "TransactionError",
    "TransactionFailure",
    "UnsupportedChainError",
    "classify_transaction_error",
    "generate_salt",
]
