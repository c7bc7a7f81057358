"""Tests for pair registry reconciliation."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from dex_buy_tracker.tracker.cache import TTLCache
from dex_buy_tracker.tracker.connections import ConnectionManager
from dex_buy_tracker.tracker.models import AlertConfig, PoolCandidate, ProtocolVersion
from dex_buy_tracker.tracker.registry import PairRegistry, PoolDiscoveryService, required_pools

TOKEN = "0x" + "11" * 20
POOL = "0x" + "33" * 20
POOL_B = "0x" + "55" * 20


@pytest.fixture
def discovery_source() -> AsyncMock:
    source = AsyncMock()
    source.discover_pools.return_value = []
    return source


@pytest.fixture
def manager(endpoints, handle_factory, clock) -> ConnectionManager:
    return ConnectionManager(
        endpoints,
        on_log=AsyncMock(),
        handle_factory=handle_factory,
        rng=lambda: 0.5,
        clock=clock,
    )


def _registry(store, manager, discovery_source, clock) -> PairRegistry:
    discovery = PoolDiscoveryService(discovery_source, TTLCache(60, clock=clock))
    return PairRegistry(store, manager, discovery)


class TestRequiredPools:
    def test_union_per_chain_lowercased(self) -> None:
        configs = [
            (-1, AlertConfig(chain="bsc", token_address=TOKEN, pair_addresses=["0x" + "AB" * 20])),
            (-2, AlertConfig(chain="bsc", token_address=TOKEN, pair_addresses=[POOL, POOL_B])),
            (-3, AlertConfig(chain="base", token_address=TOKEN, pair_addresses=[])),
        ]
        assert required_pools(configs) == {"bsc": {"0x" + "ab" * 20, POOL, POOL_B}}


class TestPairRegistry:
    """Tests for PairRegistry.sync()."""

    @pytest.mark.asyncio
    async def test_registers_configured_pool(self, config_store, manager, handle_factory, discovery_source, clock) -> None:
        registry = _registry(config_store, manager, discovery_source, clock)

        report = await registry.sync()

        assert report.added == 1
        pair = manager.get("bsc").pairs[POOL]
        assert pair.tracked_token == TOKEN
        assert pair.token0 == TOKEN
        assert set(pair.subscriptions) == set(ProtocolVersion)
        assert len(handle_factory.last.subscriptions) == 3

    @pytest.mark.asyncio
    async def test_second_sync_is_a_no_op(self, config_store, manager, handle_factory, discovery_source, clock) -> None:
        registry = _registry(config_store, manager, discovery_source, clock)
        await registry.sync()
        pair = manager.get("bsc").pairs[POOL]
        subscriptions = dict(pair.subscriptions)

        report = await registry.sync()

        assert report.churn == 0
        assert manager.get("bsc").pairs[POOL] is pair
        assert pair.subscriptions == subscriptions
        assert len(handle_factory.handles) == 1

    @pytest.mark.asyncio
    async def test_removed_config_releases_pool(self, config_store, manager, handle_factory, discovery_source, clock) -> None:
        registry = _registry(config_store, manager, discovery_source, clock)
        await registry.sync()

        config_store.configs.clear()
        report = await registry.sync()

        assert report.removed == 1
        assert manager.get("bsc").pairs == {}
        assert handle_factory.last.subscriptions == {}

    @pytest.mark.asyncio
    async def test_shared_pool_survives_one_removal(self, config_store, manager, discovery_source, clock) -> None:
        config_store.configs[-200] = AlertConfig(chain="bsc", token_address=TOKEN, pair_addresses=[POOL])
        registry = _registry(config_store, manager, discovery_source, clock)
        await registry.sync()

        del config_store.configs[-100]
        report = await registry.sync()

        assert report.removed == 0
        assert POOL in manager.get("bsc").pairs

    @pytest.mark.asyncio
    async def test_discovery_fills_empty_config(self, empty_config_store, manager, discovery_source, clock) -> None:
        config = AlertConfig(chain="bsc", token_address=TOKEN)
        empty_config_store.configs[-100] = config
        discovery_source.discover_pools.return_value = [
            PoolCandidate(address=POOL_B, liquidity_usd=90_000.0),
            PoolCandidate(address=POOL, liquidity_usd=12_000.0),
        ]
        registry = _registry(empty_config_store, manager, discovery_source, clock)

        report = await registry.sync()

        assert config.pair_addresses == [POOL_B, POOL]
        assert empty_config_store.dirty_marks == 1
        assert report.discovered == 1
        assert report.added == 2
        assert manager.get("bsc").pairs[POOL_B].token1 == TOKEN

    @pytest.mark.asyncio
    async def test_discovery_failure_leaves_config_empty(self, empty_config_store, manager, discovery_source, clock) -> None:
        config = AlertConfig(chain="bsc", token_address=TOKEN)
        empty_config_store.configs[-100] = config
        discovery_source.discover_pools.side_effect = RuntimeError("dexscreener down")
        registry = _registry(empty_config_store, manager, discovery_source, clock)

        report = await registry.sync()

        assert config.pair_addresses == []
        assert empty_config_store.dirty_marks == 0
        assert report.churn == 0

    @pytest.mark.asyncio
    async def test_malformed_pool_is_skipped(self, config_store, alert_config, manager, discovery_source, clock) -> None:
        alert_config.pair_addresses.append("0xnot-an-address")
        registry = _registry(config_store, manager, discovery_source, clock)

        report = await registry.sync()

        assert report.added == 1
        assert report.skipped == 1
        assert list(manager.get("bsc").pairs) == [POOL]

    @pytest.mark.asyncio
    async def test_unreadable_pool_is_retried_next_sync(
        self, config_store, manager, handle_factory, discovery_source, clock
    ) -> None:
        del handle_factory.tokens[POOL]
        registry = _registry(config_store, manager, discovery_source, clock)

        first = await registry.sync()
        assert first.skipped == 1
        assert manager.get("bsc").pairs == {}

        handle_factory.tokens[POOL] = (TOKEN, "0x" + "22" * 20)
        second = await registry.sync()
        assert second.added == 1

    @pytest.mark.asyncio
    async def test_unconfigured_chain_is_ignored(self, empty_config_store, manager, discovery_source, clock) -> None:
        empty_config_store.configs[-100] = AlertConfig(chain="monad", token_address=TOKEN, pair_addresses=[POOL])
        registry = _registry(empty_config_store, manager, discovery_source, clock)

        report = await registry.sync()

        assert report.added == 0
        assert manager.get("monad") is None


class TestPoolDiscoveryService:
    """Tests for PoolDiscoveryService.discover()."""

    @pytest.mark.asyncio
    async def test_source_results_are_filtered_ranked_and_capped(self, discovery_source, clock) -> None:
        pools = [PoolCandidate(address=f"0x{i:040x}", liquidity_usd=100.0 + i) for i in range(20)]
        discovery_source.discover_pools.return_value = [
            *pools[::2],
            PoolCandidate(address="0x" + "de" * 20, liquidity_usd=5.0),
            PoolCandidate(address="0x" + "ee" * 20, liquidity_usd=1_000_000.0, chain="ethereum"),
            PoolCandidate(address="0x" + "ab" * 20, liquidity_usd=500.0, chain="56"),
            *pools[1::2],
        ]
        service = PoolDiscoveryService(discovery_source, TTLCache(60, clock=clock), max_pools=15)

        found = await service.discover(TOKEN, "bsc")

        assert len(found) == 15
        assert found[0].address == "0x" + "ab" * 20
        assert [c.liquidity_usd for c in found] == sorted((c.liquidity_usd for c in found), reverse=True)
        assert found[-1].liquidity_usd == 106.0
        addresses = {c.address for c in found}
        assert "0x" + "de" * 20 not in addresses
        assert "0x" + "ee" * 20 not in addresses

    @pytest.mark.asyncio
    async def test_liquidity_floor(self, discovery_source, clock) -> None:
        discovery_source.discover_pools.return_value = [
            PoolCandidate(address=POOL, liquidity_usd=9_999.0),
            PoolCandidate(address=POOL_B, liquidity_usd=10_000.0),
        ]
        service = PoolDiscoveryService(discovery_source, TTLCache(60, clock=clock), min_liquidity_usd=10_000.0)

        assert await service.discover(TOKEN, "bsc") == [PoolCandidate(address=POOL_B, liquidity_usd=10_000.0)]

    @pytest.mark.asyncio
    async def test_sync_writes_back_only_ranked_pools(self, empty_config_store, manager, discovery_source, clock) -> None:
        config = AlertConfig(chain="bsc", token_address=TOKEN)
        empty_config_store.configs[-100] = config
        discovery_source.discover_pools.return_value = [
            PoolCandidate(address=f"0x{i:040x}", liquidity_usd=float(i)) for i in range(1, 21)
        ]
        registry = _registry(empty_config_store, manager, discovery_source, clock)

        await registry.sync()

        assert len(config.pair_addresses) == 11
        assert config.pair_addresses[0] == f"0x{20:040x}"
        assert config.pair_addresses[-1] == f"0x{10:040x}"
