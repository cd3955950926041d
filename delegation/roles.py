"""On-chain role lookups used to gate delegation actions in the UI."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from web3 import Web3

from .chain import ChainClient, ChainError

logger = logging.getLogger(__name__)


def _role_id(name: str) -> bytes:
    return bytes(Web3.keccak(text=name))


CONTRACT_ROLES: Dict[str, bytes] = {
    name: _role_id(name)
    for name in (
        "ADMIN_ROLE",
        "GOVERNANCE_ROLE",
        "TREASURY_ROLE",
        "TECHNICAL_ROLE",
        "COMMUNITY_ROLE",
        "GRANTS_ROLE",
        "OPERATIONS_ROLE",
    )
}

ROLE_MAPPING: Dict[str, bytes] = {
    "governance": CONTRACT_ROLES["GOVERNANCE_ROLE"],
    "treasury": CONTRACT_ROLES["TREASURY_ROLE"],
    "technical": CONTRACT_ROLES["TECHNICAL_ROLE"],
    "community": CONTRACT_ROLES["COMMUNITY_ROLE"],
    "grants": CONTRACT_ROLES["GRANTS_ROLE"],
    "operations": CONTRACT_ROLES["OPERATIONS_ROLE"],
}


def role_for_category(category: Optional[str]) -> Optional[str]:
    """Return the UI role that owns tasks of ``category``, if any."""

    if not category:
        return None
    key = category.strip().lower()
    return key if key in ROLE_MAPPING else None


class RoleGateService:
    """Fail-closed role checks: any doubt answers ``False``."""

    def __init__(self, chain: ChainClient) -> None:
        self._chain = chain

    async def has_role(self, role: str, address: str, chain_id: int) -> bool:
        role_id = ROLE_MAPPING.get((role or "").strip().lower())
        if role_id is None or not address:
            return False
        if not self._chain.supports(chain_id):
            return False
        try:
            return bool(await self._chain.has_role(chain_id, role_id, address))
        except Exception as exc:
            logger.error("Failed to check role %s for %s: %s", role, address, exc)
            return False

    async def admin_role(self, chain_id: int) -> str:
        try:
            role = await self._chain.admin_role(chain_id)
        except ChainError:
            raise
        except Exception as exc:
            logger.error("Failed to get ADMIN_ROLE on chain %s: %s", chain_id, exc)
            raise ChainError(f"Failed to read ADMIN_ROLE on chain {chain_id}: {exc}") from exc
        logger.info("ADMIN_ROLE constant for chain %s: %s", chain_id, role)
        return role


__all__ = ["CONTRACT_ROLES", "ROLE_MAPPING", "RoleGateService", "role_for_category"]
