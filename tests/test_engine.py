from __future__ import annotations

import asyncio
import random
from collections import Counter

import pytest

from delegation.chain import TransactionError, TransactionFailure
from delegation.config import OPTIMISM
from delegation.engine import (
    NO_ELIGIBLE_MEMBERS,
    RANDOM_DRAW_DISABLED,
    WALLET_NOT_CONNECTED,
    AssignmentOrchestrator,
    AssignmentPreconditionError,
)
from delegation.models import (
    AssignmentRequest,
    CancelledAssignment,
    EligibilityMode,
    FailedAssignment,
    FallbackAssignment,
    Member,
    SubmittedAssignment,
    Task,
)

from .conftest import ALICE, BOB, CAROL, DAVE, REQUESTER, FailingRecorder


def _assign(orchestrator, task, roster, account=REQUESTER, chain_id=OPTIMISM):
    return asyncio.run(orchestrator.assign(task, roster, account, chain_id))


def test_successful_draw_submits_and_audits(orchestrator, fake_chain, recorder, roster, technical_task) -> None:
    result = _assign(orchestrator, technical_task, roster)

    assert isinstance(result, SubmittedAssignment)
    assert result.tx_hash == fake_chain.tx_hash
    assert result.selected_member.address in {ALICE, CAROL}
    assert fake_chain.submissions[0]["members"] == [ALICE, CAROL]
    assert fake_chain.submissions[0]["account"] == REQUESTER
    assert fake_chain.submissions[0]["value"] == (fake_chain.fee * 120 + 99) // 100
    assert fake_chain.simulations[0]["salt"] == fake_chain.submissions[0]["salt"]

    (record,) = recorder.records
    assert record.action == "random_assignment"
    assert record.randomness_source == "pyth_entropy"
    assert record.chain_id == OPTIMISM
    assert record.details["transaction_hash"] == fake_chain.tx_hash
    assert record.details["eligible_members"] == [ALICE, CAROL]
    assert record.details["assigned_delegate"] == result.selected_member.address
    assert record.details["states"][-1] == "resolved"
    assert recorder.get(result.audit_id) == record


def test_simulation_revert_falls_back(orchestrator, fake_chain, recorder, roster, technical_task) -> None:
    fake_chain.simulate_error = ValueError("execution reverted: insufficient funds")

    result = _assign(orchestrator, technical_task, roster)

    assert isinstance(result, FallbackAssignment)
    assert "insufficient funds" in result.reason
    assert result.selected_member.address in {ALICE, CAROL}
    assert fake_chain.calls["submit_assignment"] == 0

    (record,) = recorder.records
    assert record.action == "fallback_assignment"
    assert record.randomness_source == "client_fallback"
    assert record.details["error"] == result.reason
    assert record.details["failure"] == "reverted"
    assert record.details["stage"] == "simulation"


def test_user_rejection_cancels_without_audit(orchestrator, fake_chain, recorder, roster, technical_task) -> None:
    fake_chain.submit_error = ValueError("User rejected the request.")

    result = _assign(orchestrator, technical_task, roster)

    assert isinstance(result, CancelledAssignment)
    assert result.selected_member is None
    assert recorder.records == []


def test_wallet_code_4001_cancels(orchestrator, fake_chain, recorder, roster, technical_task) -> None:
    fake_chain.submit_error = ValueError({"code": 4001, "message": "MetaMask Tx Signature: User denied"})

    result = _assign(orchestrator, technical_task, roster)

    assert isinstance(result, CancelledAssignment)
    assert recorder.records == []


@pytest.mark.parametrize(
    "message", ["UserRejectedRequestError", "code=ACTION_REJECTED", "userDenied signature"]
)
def test_wallet_error_names_cancel(orchestrator, fake_chain, recorder, roster, technical_task, message) -> None:
    fake_chain.submit_error = ValueError(message)

    result = _assign(orchestrator, technical_task, roster)

    assert isinstance(result, CancelledAssignment)
    assert recorder.records == []


def test_empty_roster_fails_before_network(orchestrator, fake_chain, recorder, technical_task) -> None:
    result = _assign(orchestrator, technical_task, [])

    assert result == FailedAssignment(error=NO_ELIGIBLE_MEMBERS)
    assert fake_chain.network_calls == 0
    assert recorder.records == []


def test_missing_account_fails_before_network(orchestrator, fake_chain, recorder, roster, technical_task) -> None:
    result = _assign(orchestrator, technical_task, roster, account=None)

    assert result == FailedAssignment(error=WALLET_NOT_CONNECTED)
    assert fake_chain.network_calls == 0
    assert recorder.records == []


def test_unmapped_chain_is_a_precondition_failure(orchestrator, fake_chain, recorder, roster, technical_task) -> None:
    result = _assign(orchestrator, technical_task, roster, chain_id=1)

    assert isinstance(result, FailedAssignment)
    assert "not deployed on chain 1" in result.error
    assert fake_chain.calls["simulate_assignment"] == 0
    assert recorder.records == []


def test_random_draw_disabled(orchestrator, fake_chain, roster) -> None:
    task = Task(id="task-2", category="grants", eligibility=EligibilityMode(random_draw=False))

    result = _assign(orchestrator, task, roster)

    assert result == FailedAssignment(error=RANDOM_DRAW_DISABLED)
    assert fake_chain.network_calls == 0


def test_network_error_on_submit_falls_back(orchestrator, fake_chain, recorder, roster, technical_task) -> None:
    fake_chain.submit_error = ConnectionError("connection reset by peer")

    result = _assign(orchestrator, technical_task, roster)

    assert isinstance(result, FallbackAssignment)
    (record,) = recorder.records
    assert record.details["failure"] == "network"
    assert record.details["stage"] == "submission"


def test_revert_never_reaches_submission(orchestrator, fake_chain, roster, technical_task) -> None:
    fake_chain.simulate_error = TransactionError(
        "execution reverted", failure=TransactionFailure.REVERTED, stage="simulation"
    )

    for _ in range(5):
        _assign(orchestrator, technical_task, roster)

    assert fake_chain.calls["simulate_assignment"] == 5
    assert fake_chain.calls["submit_assignment"] == 0


def test_audit_failure_does_not_change_outcome(fake_chain, fees, roster, technical_task) -> None:
    failing = FailingRecorder()
    orchestrator = AssignmentOrchestrator(fake_chain, fees, failing, rng=random.Random(1))

    result = _assign(orchestrator, technical_task, roster)

    assert isinstance(result, SubmittedAssignment)
    assert result.audit_id is None
    assert failing.attempts == 1
    assert b"assignment_audit_failures_total 1.0" in orchestrator.metrics()


def test_execute_accepts_bare_request(orchestrator, fake_chain, recorder) -> None:
    request = AssignmentRequest(task_id="task-9", eligible_addresses=[BOB, DAVE], chain_id=OPTIMISM, requester_account=REQUESTER)

    result = asyncio.run(orchestrator.execute(request))

    assert isinstance(result, SubmittedAssignment)
    assert result.selected_member.address in {BOB, DAVE}
    assert recorder.records[0].details["task"] is None


def test_execute_raises_on_missing_account(orchestrator) -> None:
    request = AssignmentRequest(task_id="task-9", eligible_addresses=[BOB], chain_id=OPTIMISM)

    with pytest.raises(AssignmentPreconditionError):
        asyncio.run(orchestrator.execute(request))


def test_draw_is_uniform_over_pool(fake_chain, fees, recorder) -> None:
    orchestrator = AssignmentOrchestrator(fake_chain, fees, recorder, rng=random.Random(2024))
    pool = [Member(address=address) for address in (ALICE, BOB, CAROL, DAVE)]

    counts = Counter(orchestrator.draw(pool).address for _ in range(8000))

    assert set(counts) == {ALICE, BOB, CAROL, DAVE}
    for count in counts.values():
        assert 1700 < count < 2300


def test_draw_rejects_empty_pool(orchestrator) -> None:
    with pytest.raises(AssignmentPreconditionError):
        orchestrator.draw([])


def test_outcome_metrics(orchestrator, fake_chain, roster, technical_task) -> None:
    _assign(orchestrator, technical_task, roster)
    fake_chain.submit_error = ValueError("User rejected the request.")
    _assign(orchestrator, technical_task, roster)
    _assign(orchestrator, technical_task, [])

    body = orchestrator.metrics().decode()
    assert 'assignment_outcomes_total{outcome="submitted"} 1.0' in body
    assert 'assignment_outcomes_total{outcome="cancelled"} 1.0' in body
    assert 'assignment_outcomes_total{outcome="failed"} 1.0' in body
    assert orchestrator.metrics_content_type.startswith("text/plain")
