"""DAO member roster fetched from the DAO registry."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from .config import DEFAULT_DAO_REGISTRY_URL
from .models import Domain, Member

logger = logging.getLogger(__name__)

MAX_MEMBERS = 200

# dao id -> (registry name, ``onchain`` query value)
SUPPORTED_DAOS: Dict[str, Tuple[str, Optional[str]]] = {
    "1inch": ("1inch.eth", None),
    "ens": ("ens.eth", "ens"),
}


def _extract_page(dao_id: str, payload: Any) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Return the raw member entries and the next cursor from one registry page."""

    if not isinstance(payload, dict):
        return [], None
    members = (payload.get("Members") or {}).get("members")
    if not isinstance(members, dict):
        return [], None
    onchain = members.get("onchain") or {}
    offchain = members.get("offchain") or {}

    if dao_id == "ens" and onchain.get("members"):
        return list(onchain["members"]), onchain.get("onchain_cursor_str")
    if dao_id == "1inch":
        if members.get("members"):
            entries = members["members"]
        elif offchain.get("members"):
            entries = offchain["members"]
        else:
            entries = onchain.get("members") or []
        cursor = onchain.get("onchain_cursor_str") or offchain.get("offchain_cursor_str")
        return list(entries), cursor
    if offchain.get("members"):
        return list(offchain["members"]), offchain.get("offchain_cursor_str")
    return [], None


def normalise_member(entry: Dict[str, Any], index: int) -> Optional[Member]:
    """Build a strict :class:`Member` from a registry entry, or ``None`` if it has no address."""

    address = entry.get("id") or entry.get("address")
    if not isinstance(address, str) or not address.strip():
        return None
    try:
        return Member(
            id=address,
            address=address,
            display_name=entry.get("name") or entry.get("ens") or f"Member {index + 1}",
            domain=Domain.UNASSIGNED,
        )
    except ValidationError as exc:
        logger.warning("Skipping malformed member entry %s: %s", index, exc)
        return None


class RosterClient:
    """Cursor-paginated reader for ``{base}/members/{dao}.eth``."""

    def __init__(
        self,
        base_url: str = DEFAULT_DAO_REGISTRY_URL,
        *,
        timeout: float = 15.0,
        max_members: int = MAX_MEMBERS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_members = max_members
        self._transport = transport

    async def fetch_members(self, dao_id: str) -> List[Member]:
        target = SUPPORTED_DAOS.get((dao_id or "").strip().lower())
        if target is None:
            logger.info("DAO %s has no member registry; returning empty roster", dao_id)
            return []
        name, onchain = target
        key = dao_id.strip().lower()
        url = f"{self._base_url}/members/{name}"

        raw: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            while True:
                params: Dict[str, str] = {}
                if onchain:
                    params["onchain"] = onchain
                if cursor:
                    params["cursor"] = cursor
                try:
                    response = await client.get(url, params=params)
                    response.raise_for_status()
                    payload = response.json()
                except (httpx.HTTPError, ValueError) as exc:
                    logger.error("Error fetching members page for %s: %s", key, exc)
                    break
                entries, cursor = _extract_page(key, payload)
                raw.extend(entry for entry in entries if isinstance(entry, dict))
                if not cursor or len(raw) >= self._max_members:
                    break

        members: List[Member] = []
        for index, entry in enumerate(raw):
            member = normalise_member(entry, index)
            if member is not None:
                members.append(member)
        logger.info("Found %d members for %s", len(members), key)
        return members


__all__ = ["MAX_MEMBERS", "RosterClient", "SUPPORTED_DAOS", "normalise_member"]
