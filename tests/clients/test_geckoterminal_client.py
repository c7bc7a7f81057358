"""Tests for the GeckoTerminal new-pool client."""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest

from dex_buy_tracker.clients.geckoterminal import GeckoTerminalClient

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)


def _item(address: str, created_at: str, reserve: str, name: str = "FROG / WBNB") -> dict:
    return {
        "id": f"bsc_{address}",
        "attributes": {
            "address": address,
            "name": name,
            "pool_created_at": created_at,
            "reserve_in_usd": reserve,
        },
    }


def _client(handler) -> GeckoTerminalClient:
    return GeckoTerminalClient(
        max_retries=1,
        retry_backoff_seconds=0,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        now=lambda: NOW,
    )


class TestNewPools:
    """Tests for GeckoTerminalClient.new_pools()."""

    @pytest.mark.asyncio
    async def test_filters_by_age_and_liquidity(self) -> None:
        payload = {
            "data": [
                _item("0xfresh", "2026-10-18T11:58:00Z", "12000.5"),
                _item("0xold", "2026-10-18T10:00:00Z", "90000"),
                _item("0xthin", "2026-10-18T11:59:00Z", "100"),
                _item("0xrich", "2026-10-18T11:55:00+00:00", "50000", name="CAT / WETH 0.3%"),
                _item("0xbroken", "yesterday", "50000"),
                {"id": "no-attributes"},
            ]
        }
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json=payload)

        pools = await _client(handler).new_pools("bsc", min_liquidity_usd=5000, max_age_seconds=600)

        assert seen == ["/api/v2/networks/bsc/new_pools"]
        assert [p.address for p in pools] == ["0xrich", "0xfresh"]
        assert pools[0].symbol == "CAT"
        assert pools[0].age_seconds == 300
        assert pools[1].liquidity_usd == 12_000.5
        assert pools[1].source == "geckoterminal"

    @pytest.mark.asyncio
    async def test_ethereum_uses_eth_network(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"data": []})

        assert await _client(handler).new_pools("ethereum", min_liquidity_usd=0, max_age_seconds=60) == []
        assert seen == ["/api/v2/networks/eth/new_pools"]

    @pytest.mark.asyncio
    async def test_unknown_chain_skips_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("unexpected request")

        assert await _client(handler).new_pools("monad", min_liquidity_usd=0, max_age_seconds=60) == []
