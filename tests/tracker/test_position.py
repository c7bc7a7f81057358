"""Tests for buyer position tracking."""

from __future__ import annotations

import pytest
from web3 import Web3

from dex_buy_tracker.errors import TransientLookupError
from dex_buy_tracker.tracker.models import CanonicalSwap
from dex_buy_tracker.tracker.position import PositionTracker, percent_increase

BUYER = Web3.to_checksum_address("0x" + "44" * 20)
TOKEN = "0x" + "11" * 20


@pytest.fixture
def swap() -> CanonicalSwap:
    return CanonicalSwap(
        chain="bsc",
        pool_address="0x" + "33" * 20,
        tx_hash="0x" + "ab" * 32,
        block_number=500,
        counterparty=BUYER,
        amount0_in=0,
        amount1_in=10**18,
        amount0_out=500,
        amount1_out=0,
    )


class TestPercentIncrease:
    def test_half_again(self) -> None:
        assert percent_increase(1000, 500) == 50

    def test_zero_previous_is_unknown(self) -> None:
        assert percent_increase(0, 500) is None

    def test_rounds_to_nearest(self) -> None:
        assert percent_increase(3, 1) == 33
        assert percent_increase(8, 1) == 13  # 12.5 rounds up


class TestPositionTracker:
    """Tests for PositionTracker.position_increase()."""

    @pytest.mark.asyncio
    async def test_reads_balance_one_block_earlier(self, fake_handle, swap) -> None:
        fake_handle.balance = 1000
        tracker = PositionTracker()

        result = await tracker.position_increase(fake_handle, swap, TOKEN, 500, 250.0)

        assert result == 50
        assert fake_handle.balance_calls == [(TOKEN, BUYER, 499)]

    @pytest.mark.asyncio
    async def test_first_purchase_is_unknown(self, fake_handle, swap) -> None:
        fake_handle.balance = 0
        assert await PositionTracker().position_increase(fake_handle, swap, TOKEN, 500, 250.0) is None

    @pytest.mark.asyncio
    async def test_small_buys_skip_the_query(self, fake_handle, swap) -> None:
        fake_handle.balance = 1000
        result = await PositionTracker(min_usd=100).position_increase(fake_handle, swap, TOKEN, 500, 99.0)

        assert result is None
        assert fake_handle.balance_calls == []

    @pytest.mark.asyncio
    async def test_query_failure_is_unknown(self, fake_handle, swap) -> None:
        fake_handle.balance = TransientLookupError("archive node unavailable")
        assert await PositionTracker().position_increase(fake_handle, swap, TOKEN, 500, 250.0) is None
