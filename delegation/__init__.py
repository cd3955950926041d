"""Randomized task assignment for DAO proposal execution."""

from .audit import AuditUploadError, MemoryAuditRecorder, PinningAuditRecorder
from .chain import ChainClient, ChainError, TransactionError, TransactionFailure, UnsupportedChainError
from .config import EngineSettings, get_settings, load_settings
from .domains import DOMAIN_MAPPING, DomainEligibilityFilter
from .engine import AssignmentOrchestrator, AssignmentPreconditionError
from .events import EventWatcher
from .fees import FeeCache, FeeQuoteService
from .manual import ManualDelegation, MembershipChecker
from .models import (
    AssignmentRequest,
    AssignmentResult,
    AuditRecord,
    Domain,
    FeeQuote,
    Member,
    Task,
    TaskCategory,
)
from .roles import ROLE_MAPPING, RoleGateService
from .roster import RosterClient
from .service import DelegationEngine, get_engine, reset_engine

__all__ = [
    "AssignmentOrchestrator",
    "AssignmentPreconditionError",
    "AssignmentRequest",
    "AssignmentResult",
    "AuditRecord",
    "AuditUploadError",
    "ChainClient",
    "ChainError",
    "DOMAIN_MAPPING",
    "DelegationEngine",
    "Domain",
    "DomainEligibilityFilter",
    "EngineSettings",
    "EventWatcher",
    "FeeCache",
    "FeeQuote",
    "FeeQuoteService",
    "ManualDelegation",
    "Member",
    "MembershipChecker",
    "MemoryAuditRecorder",
    "PinningAuditRecorder",
    "ROLE_MAPPING",
    "RoleGateService",
    "RosterClient",
    "Task",
    "TaskCategory",
    "TransactionError",
    "TransactionFailure",
    "UnsupportedChainError",
    "get_engine",
    "get_settings",
    "load_settings",
    "reset_engine",
]
