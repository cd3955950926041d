"""Randomized task assignment: simulate, submit, classify, fall back, audit."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

from .audit import AuditRecorder, build_audit_record
from .chain import ChainClient, TransactionError, generate_salt
from .domains import DomainEligibilityFilter
from .fees import FeeQuoteService
from .models import (
    AssignmentRequest,
    AssignmentResult,
    AuditRecord,
    CancelledAssignment,
    FailedAssignment,
    FallbackAssignment,
    Member,
    SubmittedAssignment,
    Task,
)

logger = logging.getLogger(__name__)

NO_ELIGIBLE_MEMBERS = "no eligible members"
WALLET_NOT_CONNECTED = "wallet not connected"
RANDOM_DRAW_DISABLED = "task does not allow random assignment"


class AssignmentPreconditionError(RuntimeError):
    """Raised when a draw cannot start: no candidates, no account, or no deployment."""


class AssignmentState(str, Enum):
    IDLE = "idle"
    FILTERING = "filtering"
    QUOTING = "quoting"
    SIMULATING = "simulating"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    TECHNICAL_FAILURE = "technical_failure"
    USER_CANCELLED = "user_cancelled"
    FALLBACK = "fallback"
    RESOLVED = "resolved"


@dataclass
class _Flow:
    task_id: str
    state: AssignmentState = AssignmentState.IDLE
    history: List[AssignmentState] = field(default_factory=lambda: [AssignmentState.IDLE])

    def advance(self, state: AssignmentState) -> None:
        logger.debug("Task %s: %s -> %s", self.task_id, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    @property
    def trail(self) -> List[str]:
        return [state.value for state in self.history]


class AssignmentOrchestrator:
    """Drive one randomized assignment from roster to resolved outcome.

    The selected member is drawn client-side from the same pool that was sent
    to the contract, without waiting for the ``TaskAssigned`` event, so the
    displayed assignee may differ from the contract's own draw.
    """

    def __init__(
        self,
        chain: ChainClient,
        fees: FeeQuoteService,
        recorder: AuditRecorder,
        *,
        eligibility: Optional[DomainEligibilityFilter] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._chain = chain
        self._fees = fees
        self._recorder = recorder
        self._eligibility = eligibility or DomainEligibilityFilter()
        self._rng = rng or random.Random()
        self._metrics_registry = CollectorRegistry()
        self._outcomes = Counter(
            "assignment_outcomes_total",
            "Count of resolved randomized assignments",
            labelnames=("outcome",),
            registry=self._metrics_registry,
        )
        self._audit_failures = Counter(
            "assignment_audit_failures_total",
            "Count of audit records that could not be stored",
            registry=self._metrics_registry,
        )

    @property
    def eligibility(self) -> DomainEligibilityFilter:
        return self._eligibility

    def draw(self, candidates: Sequence[Member]) -> Member:
        """Uniform pick from ``candidates``."""

        if not candidates:
            raise AssignmentPreconditionError(NO_ELIGIBLE_MEMBERS)
        return self._rng.choice(list(candidates))

    async def assign(
        self,
        task: Task,
        roster: Sequence[Member],
        account: Optional[str],
        chain_id: int,
    ) -> AssignmentResult:
        flow = _Flow(task.id)
        flow.advance(AssignmentState.FILTERING)
        if not task.eligibility.random_draw:
            return self._fail(flow, RANDOM_DRAW_DISABLED)
        pool = self._eligibility.filter(roster, task.category)
        if not pool:
            return self._fail(flow, NO_ELIGIBLE_MEMBERS)
        request = AssignmentRequest(
            task_id=task.id,
            eligible_addresses=[member.address for member in pool],
            chain_id=chain_id,
            requester_account=account,
        )
        try:
            return await self.execute(request, pool, roster=roster, task=task, _flow=flow)
        except AssignmentPreconditionError as exc:
            return self._fail(flow, str(exc))

    async def execute(
        self,
        request: AssignmentRequest,
        pool: Optional[Sequence[Member]] = None,
        *,
        roster: Optional[Sequence[Member]] = None,
        task: Optional[Task] = None,
        _flow: Optional[_Flow] = None,
    ) -> AssignmentResult:
        """Run the on-chain draw for an already filtered request.

        Raises :class:`AssignmentPreconditionError` when no account is
        connected or the chain has no deployment. Declines and technical
        failures are returned as results, never raised.
        """

        flow = _flow or _Flow(request.task_id)
        if not request.requester_account:
            raise AssignmentPreconditionError(WALLET_NOT_CONNECTED)
        if not self._chain.supports(request.chain_id):
            raise AssignmentPreconditionError(f"Contract not deployed on chain {request.chain_id}")
        candidates = list(pool) if pool else [Member(address=address) for address in request.eligible_addresses]
        addresses = list(request.eligible_addresses)

        flow.advance(AssignmentState.QUOTING)
        quote = await self._fees.quote(request.chain_id)
        salt = generate_salt(request.task_id, self._rng)
        logger.info(
            "Assigning task %s among %d members",
            request.task_id,
            len(addresses),
            extra={"context": {"chain_id": request.chain_id, "value": quote.payable_value, "salt": salt.hex()}},
        )

        try:
            flow.advance(AssignmentState.SIMULATING)
            await self._chain.simulate_assignment(
                request.chain_id,
                request.task_id,
                addresses,
                salt,
                account=request.requester_account,
                value=quote.payable_value,
            )
            flow.advance(AssignmentState.SUBMITTING)
            tx_hash = await self._chain.submit_assignment(
                request.chain_id,
                request.task_id,
                addresses,
                salt,
                account=request.requester_account,
                value=quote.payable_value,
            )
        except Exception as exc:
            stage = "simulation" if flow.state is AssignmentState.SIMULATING else "submission"
            error = TransactionError.from_exception(exc, stage=stage)
            if error.user_declined:
                return self._cancel(flow, error)
            return await self._fallback(flow, request, candidates, roster, task, error)

        flow.advance(AssignmentState.CONFIRMED)
        selected = self.draw(candidates)
        logger.info("Task %s submitted in %s; selected %s", request.task_id, tx_hash, selected.address)
        record = build_audit_record(
            "random_assignment",
            request.task_id,
            actor=request.requester_account,
            eligible=candidates,
            selected=selected,
            tx_hash=tx_hash,
            randomness_source="pyth_entropy",
            chain_id=request.chain_id,
            value=quote.payable_value,
            task=_task_details(task),
            states=flow.trail + [AssignmentState.RESOLVED.value],
        )
        audit_id = await self._record(record)
        flow.advance(AssignmentState.RESOLVED)
        self._outcomes.labels("submitted").inc()
        return SubmittedAssignment(tx_hash=tx_hash, selected_member=selected, audit_id=audit_id)

    def _fail(self, flow: _Flow, error: str) -> FailedAssignment:
        logger.warning("Task %s assignment failed: %s", flow.task_id, error)
        flow.advance(AssignmentState.RESOLVED)
        self._outcomes.labels("failed").inc()
        return FailedAssignment(error=error)

    def _cancel(self, flow: _Flow, error: TransactionError) -> CancelledAssignment:
        logger.info("Task %s: user rejected transaction, not assigning task", flow.task_id)
        flow.advance(AssignmentState.USER_CANCELLED)
        flow.advance(AssignmentState.RESOLVED)
        self._outcomes.labels("cancelled").inc()
        return CancelledAssignment(reason=str(error))

    async def _fallback(
        self,
        flow: _Flow,
        request: AssignmentRequest,
        candidates: Sequence[Member],
        roster: Optional[Sequence[Member]],
        task: Optional[Task],
        error: TransactionError,
    ) -> AssignmentResult:
        flow.advance(AssignmentState.TECHNICAL_FAILURE)
        logger.warning(
            "Task %s: %s failure during %s, falling back to client-side assignment: %s",
            request.task_id,
            error.failure.value,
            error.stage,
            error,
        )
        flow.advance(AssignmentState.FALLBACK)
        fallback_pool = list(candidates) or list(roster or [])
        if not fallback_pool:
            return self._fail(flow, NO_ELIGIBLE_MEMBERS)
        selected = self.draw(fallback_pool)
        reason = str(error)
        record = build_audit_record(
            "fallback_assignment",
            request.task_id,
            actor=request.requester_account,
            eligible=fallback_pool,
            selected=selected,
            error=reason,
            randomness_source="client_fallback",
            chain_id=request.chain_id,
            failure=error.failure.value,
            stage=error.stage,
            task=_task_details(task),
            states=flow.trail + [AssignmentState.RESOLVED.value],
        )
        audit_id = await self._record(record)
        flow.advance(AssignmentState.RESOLVED)
        self._outcomes.labels("fallback").inc()
        return FallbackAssignment(selected_member=selected, reason=reason, audit_id=audit_id)

    async def _record(self, record: AuditRecord) -> Optional[str]:
        try:
            return await self._recorder.record(record)
        except Exception as exc:
            self._audit_failures.inc()
            logger.warning(
                "Failed to store %s audit record for task %s, continuing with assignment: %s",
                record.action,
                record.task_id,
                exc,
            )
            return None

    def metrics(self) -> bytes:
        return generate_latest(self._metrics_registry)

    @property
    def metrics_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


def _task_details(task: Optional[Task]) -> Optional[dict]:
    if task is None:
        return None
    return task.model_dump(mode="json")


__all__ = [
    "AssignmentOrchestrator",
    "AssignmentPreconditionError",
    "AssignmentState",
    "NO_ELIGIBLE_MEMBERS",
    "RANDOM_DRAW_DISABLED",
    "WALLET_NOT_CONNECTED",
]
