"""Tests for swap log decoding, normalization and buy classification."""

from __future__ import annotations

import pytest
from web3 import Web3

from dex_buy_tracker.errors import MalformedInputError
from dex_buy_tracker.tracker.decoder import (
    SWAP_TOPICS,
    classify_buy,
    decode_swap_log,
    normalize,
    swap_version,
)
from dex_buy_tracker.tracker.models import (
    BuyLegs,
    CanonicalSwap,
    PairRuntime,
    ProtocolVersion,
    V2Swap,
    V3Swap,
    V4Swap,
)


def _canonical(**legs: int) -> CanonicalSwap:
    values = {"amount0_in": 0, "amount1_in": 0, "amount0_out": 0, "amount1_out": 0}
    values.update(legs)
    return CanonicalSwap(
        chain="bsc",
        pool_address="0x" + "33" * 20,
        tx_hash="0x" + "ab" * 32,
        block_number=100,
        counterparty=Web3.to_checksum_address("0x" + "44" * 20),
        **values,
    )


class TestSwapTopics:
    """Tests for event topic constants."""

    def test_v2_topic_matches_uniswap_v2(self) -> None:
        assert (
            SWAP_TOPICS[ProtocolVersion.V2]
            == "0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822"
        )

    def test_v3_topic_matches_uniswap_v3(self) -> None:
        assert (
            SWAP_TOPICS[ProtocolVersion.V3]
            == "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"
        )

    def test_topics_are_distinct(self) -> None:
        assert len(set(SWAP_TOPICS.values())) == 3

    def test_swap_version_detects_topic(self, swap_logs) -> None:
        assert swap_version(swap_logs.v2()) is ProtocolVersion.V2
        assert swap_version(swap_logs.v3()) is ProtocolVersion.V3
        assert swap_version(swap_logs.v4()) is ProtocolVersion.V4

    def test_swap_version_unknown(self) -> None:
        assert swap_version({"topics": ["0x" + "00" * 32]}) is None
        assert swap_version({"topics": []}) is None


class TestDecodeSwapLog:
    """Tests for decode_swap_log()."""

    def test_decode_v2(self, swap_logs, addresses) -> None:
        log = swap_logs.v2(amount1_in=10**18, amount0_out=5 * 10**21, block_number=321)
        swap = decode_swap_log(log)

        assert isinstance(swap, V2Swap)
        assert swap.amount0_in == 0
        assert swap.amount1_in == 10**18
        assert swap.amount0_out == 5 * 10**21
        assert swap.amount1_out == 0
        assert swap.block_number == 321
        assert swap.recipient == Web3.to_checksum_address(addresses.buyer)
        assert swap.sender == Web3.to_checksum_address(addresses.router)
        assert swap.tx_hash == addresses.tx_hash

    def test_decode_v3_signed_deltas(self, swap_logs) -> None:
        swap = decode_swap_log(swap_logs.v3(amount0=-700, amount1=250, block_number=0x64))

        assert isinstance(swap, V3Swap)
        assert swap.amount0 == -700
        assert swap.amount1 == 250
        assert swap.tick == -120
        assert swap.block_number == 100

    def test_decode_v4_unindexed_parties(self, swap_logs, addresses) -> None:
        swap = decode_swap_log(swap_logs.v4(amount0=42, amount1=-7, protocol_fee=99))

        assert isinstance(swap, V4Swap)
        assert swap.amount0 == 42
        assert swap.amount1 == -7
        assert swap.protocol_fee == 99
        assert swap.recipient == Web3.to_checksum_address(addresses.buyer)
        assert swap.tx_hash == addresses.tx_hash

    def test_version_mismatch_raises(self, swap_logs) -> None:
        with pytest.raises(MalformedInputError):
            decode_swap_log(swap_logs.v2(), ProtocolVersion.V3)

    def test_unknown_topic_raises(self, swap_logs) -> None:
        log = swap_logs.v2()
        log["topics"] = ["0x" + "12" * 32]
        with pytest.raises(MalformedInputError):
            decode_swap_log(log)

    def test_truncated_data_raises(self, swap_logs) -> None:
        log = swap_logs.v2(amount0_in=1)
        log["data"] = log["data"][:40]
        with pytest.raises(MalformedInputError):
            decode_swap_log(log)

    def test_missing_indexed_topics_raises(self, swap_logs) -> None:
        log = swap_logs.v3(amount0=1)
        log["topics"] = log["topics"][:1]
        with pytest.raises(MalformedInputError):
            decode_swap_log(log)


class TestNormalize:
    """Tests for mapping swap variants onto the canonical record."""

    def test_v2_passes_legs_through(self, swap_logs) -> None:
        swap = decode_swap_log(swap_logs.v2(amount1_in=3, amount0_out=9))
        canonical = normalize(swap, "bsc")

        assert (canonical.amount0_in, canonical.amount1_in) == (0, 3)
        assert (canonical.amount0_out, canonical.amount1_out) == (9, 0)
        assert canonical.chain == "bsc"

    def test_negative_delta_is_outflow(self, swap_logs) -> None:
        swap = decode_swap_log(swap_logs.v3(amount0=-500, amount1=200))
        canonical = normalize(swap, "ethereum")

        assert canonical.amount0_in == 0
        assert canonical.amount0_out == 500
        assert canonical.amount1_in == 200
        assert canonical.amount1_out == 0

    def test_v4_normalizes_like_v3(self, swap_logs) -> None:
        canonical = normalize(decode_swap_log(swap_logs.v4(amount0=11, amount1=-22)), "base")

        assert canonical.amount0_in == 11
        assert canonical.amount1_out == 22
        assert canonical.amount0_out == 0
        assert canonical.amount1_in == 0

    def test_counterparty_is_checksummed_recipient(self, swap_logs, addresses) -> None:
        canonical = normalize(decode_swap_log(swap_logs.v2(amount1_in=1)), "bsc")
        assert canonical.counterparty == Web3.to_checksum_address(addresses.buyer)


class TestClassifyBuy:
    """Tests for buy direction detection."""

    def _pair(self, token0: str, token1: str, tracked: str) -> PairRuntime:
        return PairRuntime(address="0x" + "33" * 20, token0=token0, token1=token1, tracked_token=tracked)

    def test_tracked_token0_buy(self, addresses) -> None:
        pair = self._pair(addresses.token, addresses.wbnb, addresses.token)
        legs = classify_buy(_canonical(amount1_in=10**18, amount0_out=500), pair)
        assert legs == BuyLegs(base_in=10**18, token_out=500)

    def test_tracked_token1_buy(self, addresses) -> None:
        pair = self._pair(addresses.wbnb, addresses.token, addresses.token)
        legs = classify_buy(_canonical(amount0_in=7, amount1_out=70), pair)
        assert legs == BuyLegs(base_in=7, token_out=70)

    def test_comparison_is_case_insensitive(self, addresses) -> None:
        checksummed = Web3.to_checksum_address("0x" + "ab" * 20)
        pair = self._pair(checksummed, addresses.wbnb, checksummed.lower())
        legs = classify_buy(_canonical(amount1_in=1, amount0_out=1), pair)
        assert legs is not None

    def test_sell_is_not_a_buy(self, addresses) -> None:
        pair = self._pair(addresses.token, addresses.wbnb, addresses.token)
        assert classify_buy(_canonical(amount0_in=500, amount1_out=10**18), pair) is None

    def test_zero_leg_is_not_a_buy(self, addresses) -> None:
        pair = self._pair(addresses.token, addresses.wbnb, addresses.token)
        assert classify_buy(_canonical(amount1_in=10**18), pair) is None
        assert classify_buy(_canonical(amount0_out=10), pair) is None

    def test_pool_without_tracked_token(self, addresses) -> None:
        pair = self._pair(addresses.wbnb, addresses.router, addresses.token)
        assert classify_buy(_canonical(amount0_in=1, amount1_out=1), pair) is None

    def test_v3_log_end_to_end(self, swap_logs, addresses) -> None:
        pair = self._pair(addresses.token, addresses.wbnb, addresses.token)
        swap = normalize(decode_swap_log(swap_logs.v3(amount0=-1000, amount1=2 * 10**18)), "bsc")
        assert classify_buy(swap, pair) == BuyLegs(base_in=2 * 10**18, token_out=1000)
