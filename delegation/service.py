"""Process-wide wiring of the delegation components."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .audit import AuditRecorder, recorder_from_settings
from .chain import ChainClient
from .config import EngineSettings, get_settings
from .engine import AssignmentOrchestrator
from .events import EventWatcher
from .fees import FeeQuoteService
from .manual import ManualDelegation, MembershipChecker
from .roles import RoleGateService
from .roster import RosterClient


@dataclass
class DelegationEngine:
    settings: EngineSettings
    chain: ChainClient
    fees: FeeQuoteService
    recorder: AuditRecorder
    orchestrator: AssignmentOrchestrator
    roles: RoleGateService
    manual: ManualDelegation
    roster: RosterClient
    events: EventWatcher

    @classmethod
    def build(
        cls,
        settings: Optional[EngineSettings] = None,
        *,
        chain: Optional[ChainClient] = None,
        recorder: Optional[AuditRecorder] = None,
        membership: Optional[MembershipChecker] = None,
        roster: Optional[RosterClient] = None,
    ) -> "DelegationEngine":
        settings = settings or get_settings()
        chain = chain or ChainClient(settings)
        recorder = recorder or recorder_from_settings(settings)
        fees = FeeQuoteService(chain, settings)
        return cls(
            settings=settings,
            chain=chain,
            fees=fees,
            recorder=recorder,
            orchestrator=AssignmentOrchestrator(chain, fees, recorder),
            roles=RoleGateService(chain),
            manual=ManualDelegation(recorder, membership or MembershipChecker(settings.dao_registry_url)),
            roster=roster or RosterClient(settings.dao_registry_url),
            events=EventWatcher(chain, poll_interval=settings.event_poll_interval),
        )


_ENGINE_SINGLETON: DelegationEngine | None = None


def get_engine() -> DelegationEngine:
    global _ENGINE_SINGLETON
    if _ENGINE_SINGLETON is None:
        _ENGINE_SINGLETON = DelegationEngine.build()
    return _ENGINE_SINGLETON


def set_engine(engine: Optional[DelegationEngine]) -> None:
    global _ENGINE_SINGLETON
    _ENGINE_SINGLETON = engine


def reset_engine() -> None:
    set_engine(None)


__all__ = ["DelegationEngine", "get_engine", "reset_engine", "set_engine"]
