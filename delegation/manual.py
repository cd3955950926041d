"""Opt-in and hand-picked delegate assignment."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from .audit import AuditRecorder, build_audit_record
from .config import DEFAULT_DAO_REGISTRY_URL
from .models import AuditRecord, Member, OptInResult, Task

logger = logging.getLogger(__name__)

UNASSIGNED = "unassigned"


class MembershipChecker:
    """Ask the DAO registry whether an address belongs to a DAO."""

    def __init__(
        self,
        base_url: str = DEFAULT_DAO_REGISTRY_URL,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def is_member(self, dao_id: str, address: str) -> bool:
        url = f"{self._base_url}/is_member/{dao_id}.eth"
        params = {"voter": address, "onchain": dao_id}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to check DAO membership for %s in %s: %s", address, dao_id, exc)
            return False
        return isinstance(data, dict) and data.get("is_member") is True


class ManualDelegation:
    """Assignments made by a person rather than by a draw."""

    def __init__(self, recorder: AuditRecorder, membership: Optional[MembershipChecker] = None) -> None:
        self._recorder = recorder
        self._membership = membership or MembershipChecker()

    async def opt_in(self, task: Task, dao_id: Optional[str], address: Optional[str]) -> OptInResult:
        if not task.eligibility.opt_in:
            return OptInResult(accepted=False, reason="task does not allow opt-in")
        if not address:
            return OptInResult(accepted=False, reason="wallet not connected")
        if not dao_id:
            return OptInResult(accepted=False, reason="DAO not found")
        if not await self._membership.is_member(dao_id, address):
            return OptInResult(accepted=False, reason="you are not a DAO member")

        record = build_audit_record(
            "delegate_opt_in",
            task.id,
            actor=address,
            delegate_address=address,
            dao_id=dao_id,
            task=task.model_dump(mode="json"),
        )
        try:
            cid = await self._recorder.record(record)
        except Exception as exc:
            logger.error("Failed to opt in %s for task %s: %s", address, task.id, exc)
            return OptInResult(accepted=False, reason="failed to opt in")
        logger.info("Delegate %s opted in to task %s", address, task.id)
        return OptInResult(accepted=True, assignee=address, content_id=cid)

    async def assign_member(
        self,
        task: Task,
        roster: Sequence[Member],
        member_id: Optional[str],
        *,
        actor: Optional[str] = None,
    ) -> Optional[Member]:
        """Assign the roster member with ``member_id``; ``unassigned`` clears the task."""

        if not member_id or member_id == UNASSIGNED:
            await self._record_quietly(
                build_audit_record("delegate_unassignment", task.id, actor=actor, task=task.model_dump(mode="json"))
            )
            return None
        selected = next((member for member in roster if member.id == member_id), None)
        if selected is None:
            logger.error("Selected member not found: %s", member_id)
            return None
        record = build_audit_record(
            "delegate_assignment",
            task.id,
            actor=actor,
            selected=selected,
            task=task.model_dump(mode="json"),
        )
        try:
            await self._recorder.record(record)
        except Exception as exc:
            logger.error("Failed to assign member %s to task %s: %s", selected.address, task.id, exc)
            return None
        logger.info("Member %s assigned to task %s", selected.address, task.id)
        return selected

    async def _record_quietly(self, record: AuditRecord) -> Optional[str]:
        try:
            return await self._recorder.record(record)
        except Exception as exc:
            logger.error("Failed to store %s audit record for task %s: %s", record.action, record.task_id, exc)
            return None


__all__ = ["ManualDelegation", "MembershipChecker", "UNASSIGNED"]
