"""Shared Pydantic models for the delegation engine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class Domain(str, Enum):
    """Subject-matter competency declared by a DAO member."""

    TECHNICAL = "technical"
    CONTRACTS = "contracts"
    ACCOUNTING = "accounting"
    BUSINESS_DEVELOPMENT = "business_development"
    STRATEGY = "strategy"
    GOVERNANCE = "governance"
    UNASSIGNED = "unassigned"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Domain"]:
        if isinstance(value, str):
            text = value.strip().lower()
            if text == "tech":
                return cls.TECHNICAL
            for member in cls:
                if member.value == text:
                    return member
        return None


class TaskCategory(str, Enum):
    """Proposal categories that have a static domain mapping."""

    GOVERNANCE = "governance"
    TREASURY = "treasury"
    TECHNICAL = "technical"
    COMMUNITY = "community"
    GRANTS = "grants"
    OPERATIONS = "operations"


class Member(BaseModel):
    """A DAO member snapshot; ``address`` is the identity key."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    address: str = Field(..., min_length=1)
    id: str = ""
    display_name: Optional[str] = Field(default=None, alias="displayName")
    domain: Domain = Domain.UNASSIGNED

    @field_validator("address")
    @classmethod
    def _strip_address(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("address must not be blank")
        return value

    @field_validator("domain", mode="before")
    @classmethod
    def _default_domain(cls, value: Any) -> Any:
        if value is None or value == "":
            return Domain.UNASSIGNED
        if isinstance(value, str):
            try:
                return Domain(value)
            except ValueError:
                logger.warning("Unknown member domain %r, treating as unassigned", value)
                return Domain.UNASSIGNED
        return value

    @model_validator(mode="before")
    @classmethod
    def _default_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            address = data.get("address")
            if isinstance(address, str):
                data = {**data, "id": address.strip()}
        return data

    @property
    def label(self) -> str:
        return self.display_name or self.address


class EligibilityMode(BaseModel):
    """Which assignment paths a task accepts."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    opt_in: bool = Field(default=True, alias="optIn")
    random_draw: bool = Field(default=True, alias="randomDraw")


class Task(BaseModel):
    """An execution task derived from an approved proposal."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    category: str = Field(default=TaskCategory.OPERATIONS.value)
    title: str = "Untitled Task"
    eligibility: EligibilityMode = Field(default_factory=EligibilityMode, alias="eligibilityMode")

    @field_validator("category", mode="before")
    @classmethod
    def _normalise_category(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            value = value.value
        if value is None:
            return TaskCategory.OPERATIONS.value
        return str(value).strip().lower()


class FeeQuote(BaseModel):
    """Buffered cost of a randomized assignment on one chain, in wei."""

    model_config = ConfigDict(frozen=True)

    chain_id: int
    randomness_fee: int = Field(..., ge=0)
    gas_units: int = Field(..., ge=0)
    gas_fee: int = Field(..., ge=0)
    buffer_pct: int = Field(..., ge=100)
    total: int = Field(..., ge=0)
    quoted_at: float

    @property
    def payable_value(self) -> int:
        """Value attached to ``assignTask``: the buffered randomness fee."""

        return buffered(self.randomness_fee, self.buffer_pct)


def buffered(amount: int, buffer_pct: int) -> int:
    """Return ``ceil(amount * buffer_pct / 100)`` using integer arithmetic."""

    return -(-(amount * buffer_pct) // 100)


class AssignmentRequest(BaseModel):
    """Inputs of one on-chain draw after the roster has been filtered."""

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(..., min_length=1)
    eligible_addresses: List[str] = Field(..., min_length=1)
    chain_id: int
    requester_account: Optional[str] = None


class SubmittedAssignment(BaseModel):
    kind: Literal["submitted"] = "submitted"
    tx_hash: str
    selected_member: Member
    audit_id: Optional[str] = None


class FallbackAssignment(BaseModel):
    kind: Literal["fallback"] = "fallback"
    selected_member: Member
    reason: str
    audit_id: Optional[str] = None


class CancelledAssignment(BaseModel):
    kind: Literal["cancelled"] = "cancelled"
    reason: str
    selected_member: None = None


class FailedAssignment(BaseModel):
    kind: Literal["failed"] = "failed"
    error: str
    selected_member: None = None


AssignmentResult = Annotated[
    Union[SubmittedAssignment, FallbackAssignment, CancelledAssignment, FailedAssignment],
    Field(discriminator="kind"),
]


AuditAction = Literal[
    "random_assignment",
    "fallback_assignment",
    "delegate_opt_in",
    "delegate_assignment",
    "delegate_unassignment",
]

RandomnessSource = Literal["pyth_entropy", "client_fallback"]


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditRecord(BaseModel):
    """Immutable description of one resolved delegation decision."""

    model_config = ConfigDict(frozen=True)

    action: AuditAction
    task_id: str
    timestamp: str = Field(default_factory=_utcnow)
    actor: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    randomness_source: Optional[RandomnessSource] = None
    chain_id: Optional[int] = None


class OptInResult(BaseModel):
    accepted: bool
    assignee: Optional[str] = None
    reason: Optional[str] = None
    content_id: Optional[str] = None


__all__ = [
    "AssignmentRequest",
    "AssignmentResult",
    "AuditAction",
    "AuditRecord",
    "CancelledAssignment",
    "Domain",
    "EligibilityMode",
    "FailedAssignment",
    "FallbackAssignment",
    "FeeQuote",
    "Member",
    "OptInResult",
    "RandomnessSource",
    "SubmittedAssignment",
    "Task",
    "TaskCategory",
    "buffered",
]
