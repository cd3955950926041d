"""Randomness and gas fee quoting for randomized task assignment."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

from web3 import Web3

from .chain import ChainClient, generate_salt
from .config import EngineSettings
from .models import FeeQuote, buffered

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    fee: int
    fetched_at: float


class FeeCache:
    """Per-chain oracle fee cache with a fixed time-to-live.

    There is no lock: concurrent misses may each read the oracle, which is
    harmless because the read is idempotent.
    """

    def __init__(self, ttl: float = 60.0, *, clock: Callable[[], float] = time.time) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._clock = clock
        self._entries: Dict[int, _CacheEntry] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def get(self, chain_id: int) -> Optional[Tuple[int, float]]:
        entry = self._entries.get(chain_id)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at >= self._ttl:
            return None
        return entry.fee, entry.fetched_at

    def put(self, chain_id: int, fee: int) -> float:
        fetched_at = self._clock()
        self._entries[chain_id] = _CacheEntry(fee=fee, fetched_at=fetched_at)
        return fetched_at

    def clear(self) -> None:
        self._entries.clear()


class FeeQuoteService:
    """Quote the oracle fee plus assignment gas, padded by the canonical buffer."""

    def __init__(
        self,
        chain: ChainClient,
        settings: EngineSettings,
        *,
        cache: Optional[FeeCache] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._chain = chain
        self._settings = settings
        self._cache = cache or FeeCache(settings.fee_cache_ttl)
        self._rng = rng

    @property
    def buffer_pct(self) -> int:
        return self._settings.fee_buffer_pct

    async def entropy_fee(self, chain_id: int) -> int:
        fee, _ = await self._entropy_fee_entry(chain_id)
        return fee

    async def _entropy_fee_entry(self, chain_id: int) -> Tuple[int, float]:
        cached = self._cache.get(chain_id)
        if cached is not None:
            return cached
        try:
            fee = await self._chain.entropy_fee(chain_id)
        except Exception as exc:
            logger.error("Failed to get entropy fee for chain %s: %s", chain_id, exc)
            return self._settings.fallback_entropy_fee_wei, self._cache.now()
        fetched_at = self._cache.put(chain_id, fee)
        logger.info("Entropy fee for chain %s: %s", chain_id, format_fee(fee))
        return fee, fetched_at

    async def estimate_gas(
        self,
        task_id: str,
        members: Sequence[str],
        chain_id: int,
        *,
        account: Optional[str] = None,
    ) -> int:
        """Gas units for ``assignTask`` with a fresh salt, or the fallback estimate."""

        try:
            salt = generate_salt(task_id, self._rng)
            gas = await self._chain.estimate_assignment_gas(
                chain_id, task_id, list(members), salt, account=account
            )
        except Exception as exc:
            logger.error("Failed to estimate gas for task %s: %s", task_id, exc)
            return self._settings.fallback_gas
        logger.debug("Gas estimate for task assignment: %s", gas)
        return gas

    async def _gas_price(self, chain_id: int) -> int:
        try:
            return await self._chain.gas_price(chain_id)
        except Exception as exc:
            logger.warning("Failed to read gas price for chain %s: %s", chain_id, exc)
            return self._settings.fallback_gas_price_wei

    async def quote(
        self,
        chain_id: int,
        *,
        task_id: Optional[str] = None,
        members: Optional[Sequence[str]] = None,
        account: Optional[str] = None,
    ) -> FeeQuote:
        randomness_fee, quoted_at = await self._entropy_fee_entry(chain_id)
        if task_id and members:
            gas_units = await self.estimate_gas(task_id, members, chain_id, account=account)
        else:
            gas_units = self._settings.fallback_gas
        gas_fee = gas_units * await self._gas_price(chain_id)
        return FeeQuote(
            chain_id=chain_id,
            randomness_fee=randomness_fee,
            gas_units=gas_units,
            gas_fee=gas_fee,
            buffer_pct=self.buffer_pct,
            total=buffered(randomness_fee + gas_fee, self.buffer_pct),
            quoted_at=quoted_at,
        )


def format_fee(fee: int) -> str:
    """Return a human-readable ether amount (e.g. ``"0.001 ETH"``)."""

    text = format(Web3.from_wei(fee, "ether"), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} ETH"


__all__ = ["FeeCache", "FeeQuoteService", "format_fee"]
