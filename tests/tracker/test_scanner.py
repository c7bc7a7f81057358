"""Tests for the new-pool scanner."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from dex_buy_tracker.tracker.models import NewPool
from dex_buy_tracker.tracker.scanner import NewPoolScanner


def _pool(symbol: str, liquidity: float) -> NewPool:
    return NewPool(
        address="0x" + "77" * 20,
        symbol=symbol,
        liquidity_usd=liquidity,
        age_seconds=120,
        source="geckoterminal",
    )


@pytest.fixture
def source() -> AsyncMock:
    source = AsyncMock()
    source.new_pools.return_value = [_pool("FROG", 12_000.0), _pool("CAT", 8_000.0)]
    return source


class TestNewPoolScanner:
    """Tests for NewPoolScanner."""

    @pytest.mark.asyncio
    async def test_scan_once_passes_filters(self, source) -> None:
        scanner = NewPoolScanner(source, ["bsc"], min_liquidity_usd=7_500.0, max_age_seconds=300)

        pools = await scanner.scan_once("bsc")

        assert [p.symbol for p in pools] == ["FROG", "CAT"]
        source.new_pools.assert_awaited_once_with("bsc", min_liquidity_usd=7_500.0, max_age_seconds=300)
        stats = scanner.stats_for("bsc")
        assert stats.scans == 1
        assert stats.pools_seen == 2

    @pytest.mark.asyncio
    async def test_one_loop_per_chain(self, source) -> None:
        scanner = NewPoolScanner(source, ["bsc", "base"], interval_seconds=60)

        scanner.start()
        for _ in range(50):
            if source.new_pools.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await scanner.stop()

        chains = sorted(call.args[0] for call in source.new_pools.await_args_list)
        assert chains == ["base", "bsc"]
        assert not scanner.is_running

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_the_loop(self, source) -> None:
        source.new_pools.side_effect = RuntimeError("geckoterminal down")
        scanner = NewPoolScanner(source, ["bsc"], interval_seconds=0.01)

        scanner.start()
        for _ in range(100):
            if scanner.stats_for("bsc").errors >= 2:
                break
            await asyncio.sleep(0.01)
        assert scanner.is_running
        await scanner.stop()

        assert scanner.stats_for("bsc").errors >= 2

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, source) -> None:
        scanner = NewPoolScanner(source, ["bsc"], interval_seconds=60)
        scanner.start()
        scanner.start()
        await asyncio.sleep(0)
        await scanner.stop()
        assert source.new_pools.await_count == 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self, source) -> None:
        scanner = NewPoolScanner(source, ["bsc"])
        await scanner.stop()
        assert not scanner.is_running
