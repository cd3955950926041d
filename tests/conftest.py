"""Shared fixtures: an in-memory chain, a fake clock and sample rosters."""

from __future__ import annotations

import random
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

from delegation.audit import MemoryAuditRecorder
from delegation.chain import UnsupportedChainError
from delegation.config import OPTIMISM, OPTIMISM_SEPOLIA, EngineSettings
from delegation.engine import AssignmentOrchestrator
from delegation.fees import FeeCache, FeeQuoteService
from delegation.models import Domain, Member, Task

ALICE = "0x00000000000000000000000000000000000000a1"
BOB = "0x00000000000000000000000000000000000000b2"
CAROL = "0x00000000000000000000000000000000000000c3"
DAVE = "0x00000000000000000000000000000000000000d4"
REQUESTER = "0x000000000000000000000000000000000000beef"


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFilter:
    def __init__(self, chain: "FakeChain") -> None:
        self._chain = chain

    def get_new_entries(self) -> List[Dict[str, Any]]:
        self._chain.calls["get_new_entries"] += 1
        if self._chain.filter_error is not None:
            error, self._chain.filter_error = self._chain.filter_error, None
            raise error
        entries, self._chain.pending_events = self._chain.pending_events, []
        return entries


class FakeChain:
    """Stand-in for :class:`delegation.chain.ChainClient` with call counters."""

    def __init__(
        self,
        *,
        supported: Iterable[int] = (OPTIMISM, OPTIMISM_SEPOLIA),
        fee: int = 10**14,
        gas: int = 150_000,
        gas_price: int = 2 * 10**9,
    ) -> None:
        self.supported = set(supported)
        self.fee = fee
        self.gas = gas
        self.gas_price_wei = gas_price
        self.admin = "0x" + "ab" * 32
        self.tx_hash = "0x" + "12" * 32
        self.roles: Dict[Tuple[bytes, str], bool] = {}
        self.fee_error: Optional[BaseException] = None
        self.gas_error: Optional[BaseException] = None
        self.gas_price_error: Optional[BaseException] = None
        self.simulate_error: Optional[BaseException] = None
        self.submit_error: Optional[BaseException] = None
        self.role_error: Optional[BaseException] = None
        self.filter_error: Optional[BaseException] = None
        self.pending_events: List[Dict[str, Any]] = []
        self.calls: Counter = Counter()
        self.simulations: List[Dict[str, Any]] = []
        self.submissions: List[Dict[str, Any]] = []

    @property
    def network_calls(self) -> int:
        return sum(count for name, count in self.calls.items() if name != "supports")

    def supports(self, chain_id: int) -> bool:
        self.calls["supports"] += 1
        return chain_id in self.supported

    def _require(self, chain_id: int) -> None:
        if chain_id not in self.supported:
            raise UnsupportedChainError(chain_id)

    async def entropy_fee(self, chain_id: int) -> int:
        self.calls["entropy_fee"] += 1
        if chain_id not in self.supported:
            raise UnsupportedChainError(chain_id, what="Randomness oracle")
        if self.fee_error is not None:
            raise self.fee_error
        return self.fee

    async def gas_price(self, chain_id: int) -> int:
        self.calls["gas_price"] += 1
        self._require(chain_id)
        if self.gas_price_error is not None:
            raise self.gas_price_error
        return self.gas_price_wei

    async def estimate_assignment_gas(self, chain_id, task_id, members, salt, *, account=None, value=0) -> int:
        self.calls["estimate_assignment_gas"] += 1
        self._require(chain_id)
        if self.gas_error is not None:
            raise self.gas_error
        return self.gas

    async def simulate_assignment(self, chain_id, task_id, members, salt, *, account, value) -> None:
        self.calls["simulate_assignment"] += 1
        self._require(chain_id)
        self.simulations.append(
            {"task_id": task_id, "members": list(members), "salt": salt, "account": account, "value": value}
        )
        if self.simulate_error is not None:
            raise self.simulate_error

    async def submit_assignment(self, chain_id, task_id, members, salt, *, account, value) -> str:
        self.calls["submit_assignment"] += 1
        self._require(chain_id)
        self.submissions.append(
            {"task_id": task_id, "members": list(members), "salt": salt, "account": account, "value": value}
        )
        if self.submit_error is not None:
            raise self.submit_error
        return self.tx_hash

    async def has_role(self, chain_id: int, role_id: bytes, address: str) -> bool:
        self.calls["has_role"] += 1
        self._require(chain_id)
        if self.role_error is not None:
            raise self.role_error
        return self.roles.get((role_id, address), False)

    async def admin_role(self, chain_id: int) -> str:
        self.calls["admin_role"] += 1
        self._require(chain_id)
        if self.role_error is not None:
            raise self.role_error
        return self.admin

    def task_assigned_filter(self, chain_id: int) -> FakeFilter:
        self.calls["task_assigned_filter"] += 1
        self._require(chain_id)
        return FakeFilter(self)

    def uninstall_filter(self, chain_id: int, log_filter: FakeFilter) -> bool:
        self.calls["uninstall_filter"] += 1
        return True


class FailingRecorder:
    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error or RuntimeError("storage offline")
        self.attempts = 0

    async def record(self, record) -> str:
        self.attempts += 1
        raise self.error


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> MemoryAuditRecorder:
    return MemoryAuditRecorder()


@pytest.fixture
def fees(fake_chain: FakeChain, settings: EngineSettings, clock: FakeClock) -> FeeQuoteService:
    return FeeQuoteService(fake_chain, settings, cache=FeeCache(settings.fee_cache_ttl, clock=clock))


@pytest.fixture
def orchestrator(fake_chain: FakeChain, fees: FeeQuoteService, recorder: MemoryAuditRecorder) -> AssignmentOrchestrator:
    return AssignmentOrchestrator(fake_chain, fees, recorder, rng=random.Random(7))


@pytest.fixture
def roster() -> List[Member]:
    return [
        Member(address=ALICE, display_name="Alice", domain=Domain.TECHNICAL),
        Member(address=BOB, display_name="Bob", domain=Domain.ACCOUNTING),
        Member(address=CAROL, display_name="Carol", domain=Domain.CONTRACTS),
        Member(address=DAVE, display_name="Dave", domain=Domain.GOVERNANCE),
    ]


@pytest.fixture
def technical_task() -> Task:
    return Task(id="task-1", category="technical", title="Upgrade the treasury module")
