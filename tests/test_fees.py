from __future__ import annotations

import asyncio

import pytest

from delegation.config import OPTIMISM, OPTIMISM_SEPOLIA, EngineSettings
from delegation.fees import FeeCache, FeeQuoteService, format_fee
from delegation.models import buffered

from .conftest import ALICE, BOB, FakeChain, FakeClock


def test_cached_fee_is_reused_within_ttl(fees: FeeQuoteService, fake_chain: FakeChain, clock: FakeClock) -> None:
    first = asyncio.run(fees.entropy_fee(OPTIMISM))
    clock.advance(10)
    second = asyncio.run(fees.entropy_fee(OPTIMISM))

    assert first == second == fake_chain.fee
    assert fake_chain.calls["entropy_fee"] == 1


def test_cache_expires_after_ttl(fees: FeeQuoteService, fake_chain: FakeChain, clock: FakeClock) -> None:
    asyncio.run(fees.entropy_fee(OPTIMISM))
    clock.advance(60)
    fake_chain.fee = 3 * 10**14

    assert asyncio.run(fees.entropy_fee(OPTIMISM)) == 3 * 10**14
    assert fake_chain.calls["entropy_fee"] == 2


def test_cache_is_per_chain(fees: FeeQuoteService, fake_chain: FakeChain) -> None:
    asyncio.run(fees.entropy_fee(OPTIMISM))
    asyncio.run(fees.entropy_fee(OPTIMISM_SEPOLIA))

    assert fake_chain.calls["entropy_fee"] == 2


def test_oracle_failure_uses_fallback_fee_without_caching(fees: FeeQuoteService, fake_chain: FakeChain, settings) -> None:
    fake_chain.fee_error = ConnectionError("rpc down")

    assert asyncio.run(fees.entropy_fee(OPTIMISM)) == settings.fallback_entropy_fee_wei == 10**15

    fake_chain.fee_error = None
    assert asyncio.run(fees.entropy_fee(OPTIMISM)) == fake_chain.fee
    assert fake_chain.calls["entropy_fee"] == 2


def test_unmapped_chain_quotes_with_fallbacks(fees: FeeQuoteService, settings) -> None:
    quote = asyncio.run(fees.quote(1))

    assert quote.randomness_fee == settings.fallback_entropy_fee_wei
    assert quote.gas_units == settings.fallback_gas
    assert quote.gas_fee == settings.fallback_gas * settings.fallback_gas_price_wei


def test_gas_estimate_falls_back_on_error(fees: FeeQuoteService, fake_chain: FakeChain) -> None:
    fake_chain.gas_error = ValueError("execution reverted")

    assert asyncio.run(fees.estimate_gas("task-1", [ALICE], OPTIMISM)) == 200_000


def test_quote_total_is_buffered_sum(fees: FeeQuoteService, fake_chain: FakeChain, clock: FakeClock) -> None:
    quote = asyncio.run(fees.quote(OPTIMISM, task_id="task-1", members=[ALICE, BOB], account=ALICE))

    gas_fee = fake_chain.gas * fake_chain.gas_price_wei
    assert quote.randomness_fee == fake_chain.fee
    assert quote.gas_units == fake_chain.gas
    assert quote.gas_fee == gas_fee
    assert quote.buffer_pct == 120
    assert quote.total == (fake_chain.fee + gas_fee) * 120 // 100
    assert quote.payable_value == buffered(fake_chain.fee, 120)
    assert quote.quoted_at == clock.now
    assert fake_chain.calls["estimate_assignment_gas"] == 1


def test_quote_reports_when_fee_was_fetched(fees: FeeQuoteService, clock: FakeClock) -> None:
    first = asyncio.run(fees.quote(OPTIMISM))
    clock.advance(30)
    second = asyncio.run(fees.quote(OPTIMISM))

    assert second.quoted_at == first.quoted_at


@pytest.mark.parametrize(
    "amount, pct, expected",
    [(100, 120, 120), (1, 115, 2), (0, 120, 0), (10**15, 115, 1_150_000_000_000_000)],
)
def test_buffered_rounds_up(amount: int, pct: int, expected: int) -> None:
    assert buffered(amount, pct) == expected


def test_fee_cache_rejects_non_positive_ttl() -> None:
    with pytest.raises(ValueError):
        FeeCache(0)


def test_fee_cache_clear() -> None:
    clock = FakeClock()
    cache = FeeCache(60, clock=clock)
    cache.put(OPTIMISM, 5)
    assert cache.get(OPTIMISM) == (5, clock.now)
    cache.clear()
    assert cache.get(OPTIMISM) is None


def test_custom_buffer_is_applied(fake_chain: FakeChain, clock: FakeClock) -> None:
    settings = EngineSettings(fee_buffer_pct=115)
    service = FeeQuoteService(fake_chain, settings, cache=FeeCache(60, clock=clock))

    quote = asyncio.run(service.quote(OPTIMISM))

    assert quote.total == buffered(quote.randomness_fee + quote.gas_fee, 115)


def test_format_fee() -> None:
    assert format_fee(10**15) == "0.001 ETH"
    assert format_fee(0) == "0 ETH"
