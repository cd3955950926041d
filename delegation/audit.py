"""Durable audit records for delegation decisions."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .config import EngineSettings
from .models import AuditAction, AuditRecord, Member, RandomnessSource

logger = logging.getLogger(__name__)

_AUDIT_LOGGER = logging.getLogger("delegation.audit")


class AuditUploadError(RuntimeError):
    """Raised when the storage service does not accept an audit record."""

    def __init__(self, message: str, *, provider: str, status: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.status = status
        self.retryable = retryable


class AuditRecorder(Protocol):
    async def record(self, record: AuditRecord) -> str:  # pragma: no cover - protocol
        ...


def serialize_record(record: AuditRecord) -> str:
    return json.dumps(record.model_dump(mode="json"), sort_keys=True, indent=2)


def content_id(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _is_retryable_status(status: int) -> bool:
    return status >= 500 or status in {408, 409, 429}


def _build_auth_headers(token: Optional[str]) -> Dict[str, str]:
    token = (token or "").strip()
    if not token:
        return {}
    if token.lower().startswith("bearer "):
        return {"Authorization": token}
    return {"Authorization": f"Bearer {token}"}


class PinningAuditRecorder:
    """Upload each record as a JSON document to an IPFS pinning endpoint."""

    def __init__(
        self,
        endpoint: str,
        *,
        token: Optional[str] = None,
        provider: str = "lighthouse",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/ ")
        self._headers = _build_auth_headers(token)
        self._provider = provider
        self._timeout = timeout
        self._transport = transport

    async def record(self, record: AuditRecord) -> str:
        text = serialize_record(record)
        name = f"dao-delegation-{record.action}-{record.task_id}.json"
        files = {"file": (name, text, "application/json")}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._endpoint, headers=self._headers, files=files)
        except httpx.HTTPError as exc:
            raise AuditUploadError(str(exc), provider=self._provider, retryable=True) from exc
        if response.status_code not in (200, 201):
            raise AuditUploadError(
                f"Audit storage {self._provider} failed: {response.status_code} {response.text}",
                provider=self._provider,
                status=response.status_code,
                retryable=_is_retryable_status(response.status_code),
            )
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise AuditUploadError("Invalid audit storage response", provider=self._provider) from exc
        data = payload.get("data", payload) if isinstance(payload, dict) else None
        cid = None
        if isinstance(data, dict):
            cid = data.get("Hash") or data.get("cid") or data.get("IpfsHash")
        if not cid:
            raise AuditUploadError("Missing content id in audit storage response", provider=self._provider)
        _AUDIT_LOGGER.info(record.action, extra={"context": {"task_id": record.task_id, "cid": cid}})
        return str(cid)


class MemoryAuditRecorder:
    """Append-only in-process store, used when no endpoint is configured."""

    def __init__(self) -> None:
        self._entries: List[Dict[str, Any]] = []

    @property
    def records(self) -> List[AuditRecord]:
        return [entry["record"] for entry in self._entries]

    def get(self, cid: str) -> Optional[AuditRecord]:
        for entry in self._entries:
            if entry["cid"] == cid:
                return entry["record"]
        return None

    async def record(self, record: AuditRecord) -> str:
        cid = content_id(serialize_record(record))
        self._entries.append({"cid": cid, "record": record})
        _AUDIT_LOGGER.info(record.action, extra={"context": {"task_id": record.task_id, "cid": cid}})
        return cid


def recorder_from_settings(settings: EngineSettings) -> AuditRecorder:
    if settings.audit_endpoint:
        return PinningAuditRecorder(settings.audit_endpoint, token=settings.audit_token)
    logger.warning("No audit endpoint configured; audit records are kept in memory only")
    return MemoryAuditRecorder()


def build_audit_record(
    action: AuditAction,
    task_id: str,
    *,
    actor: Optional[str] = None,
    eligible: Optional[Sequence[Member]] = None,
    selected: Optional[Member] = None,
    tx_hash: Optional[str] = None,
    error: Optional[str] = None,
    randomness_source: Optional[RandomnessSource] = None,
    chain_id: Optional[int] = None,
    **details: Any,
) -> AuditRecord:
    payload: Dict[str, Any] = dict(details)
    if eligible is not None:
        payload["eligible_members"] = [member.address for member in eligible]
    if selected is not None:
        payload["assigned_delegate"] = selected.address
    if tx_hash:
        payload["transaction_hash"] = tx_hash
    if error:
        payload["error"] = error
    return AuditRecord(
        action=action,
        task_id=task_id,
        actor=actor,
        details=payload,
        randomness_source=randomness_source,
        chain_id=chain_id,
    )


__all__ = [
    "AuditRecorder",
    "AuditUploadError",
    "MemoryAuditRecorder",
    "PinningAuditRecorder",
    "build_audit_record",
    "recorder_from_settings",
]
