"""FastAPI router exposing randomized task assignment."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Response
from pydantic import BaseModel, Field

from delegation.chain import ChainError, UnsupportedChainError
from delegation.fees import format_fee
from delegation.models import AssignmentResult, FeeQuote, Member, OptInResult, Task
from delegation.roles import ROLE_MAPPING
from delegation.service import get_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assignment", tags=["assignment"])


class QuoteIn(BaseModel):
    chain_id: int
    task_id: Optional[str] = None
    members: List[str] = Field(default_factory=list)
    account: Optional[str] = None


class QuoteOut(BaseModel):
    quote: FeeQuote
    payable_value: int
    display: str


class FilterIn(BaseModel):
    task: Task
    roster: List[Member]


class FilterOut(BaseModel):
    category: str
    allowed_domains: Optional[List[str]] = None
    members: List[Member]


class RandomAssignmentIn(BaseModel):
    task: Task
    roster: List[Member]
    chain_id: int
    account: Optional[str] = None


class OptInIn(BaseModel):
    task: Task
    dao_id: Optional[str] = None
    address: Optional[str] = None


class ManualAssignmentIn(BaseModel):
    task: Task
    roster: List[Member]
    member_id: Optional[str] = None
    actor: Optional[str] = None


class ManualAssignmentOut(BaseModel):
    assigned: Optional[Member] = None


class RoleOut(BaseModel):
    role: str
    address: str
    chain_id: int
    has_role: bool


class AdminRoleOut(BaseModel):
    chain_id: int
    role: str


def _chain_http_error(exc: ChainError) -> HTTPException:
    logger.warning("Chain request failed: %s", exc)
    if isinstance(exc, UnsupportedChainError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


@router.post("/quote", response_model=QuoteOut)
async def quote_assignment(payload: QuoteIn) -> QuoteOut:
    quote = await get_engine().fees.quote(
        payload.chain_id,
        task_id=payload.task_id,
        members=payload.members or None,
        account=payload.account,
    )
    return QuoteOut(quote=quote, payable_value=quote.payable_value, display=format_fee(quote.total))


@router.post("/filter", response_model=FilterOut)
async def filter_roster(payload: FilterIn) -> FilterOut:
    eligibility = get_engine().orchestrator.eligibility
    allowed = eligibility.allowed_domains(payload.task.category)
    return FilterOut(
        category=payload.task.category,
        allowed_domains=sorted(domain.value for domain in allowed) if allowed is not None else None,
        members=eligibility.filter(payload.roster, payload.task.category),
    )


@router.post("/random", response_model=AssignmentResult)
async def assign_random(payload: RandomAssignmentIn) -> AssignmentResult:
    try:
        return await get_engine().orchestrator.assign(
            payload.task, payload.roster, payload.account, payload.chain_id
        )
    except ChainError as exc:
        raise _chain_http_error(exc) from exc


@router.post("/opt-in", response_model=OptInResult)
async def opt_in(payload: OptInIn) -> OptInResult:
    return await get_engine().manual.opt_in(payload.task, payload.dao_id, payload.address)


@router.post("/manual", response_model=ManualAssignmentOut)
async def assign_manual(payload: ManualAssignmentIn) -> ManualAssignmentOut:
    assigned = await get_engine().manual.assign_member(
        payload.task, payload.roster, payload.member_id, actor=payload.actor
    )
    return ManualAssignmentOut(assigned=assigned)


@router.get("/members/{dao_id}", response_model=List[Member])
async def list_members(dao_id: str) -> List[Member]:
    return await get_engine().roster.fetch_members(dao_id)


@router.get("/roles/{role}", response_model=RoleOut)
async def check_role(role: str, address: str = Query(...), chain_id: int = Query(...)) -> RoleOut:
    if role.strip().lower() not in ROLE_MAPPING:
        raise HTTPException(status_code=404, detail=f"Unknown role {role}")
    granted = await get_engine().roles.has_role(role, address, chain_id)
    return RoleOut(role=role.strip().lower(), address=address, chain_id=chain_id, has_role=granted)


@router.get("/admin-role", response_model=AdminRoleOut)
async def admin_role(chain_id: int = Query(...)) -> AdminRoleOut:
    try:
        role = await get_engine().roles.admin_role(chain_id)
    except ChainError as exc:
        raise _chain_http_error(exc) from exc
    return AdminRoleOut(chain_id=chain_id, role=role)


@router.get("/metrics")
def metrics() -> Response:
    orchestrator = get_engine().orchestrator
    return Response(orchestrator.metrics(), media_type=orchestrator.metrics_content_type)


__all__ = [
    "router",
    "quote_assignment",
    "filter_roster",
    "assign_random",
    "opt_in",
    "assign_manual",
    "list_members",
    "check_role",
    "admin_role",
    "metrics",
]
