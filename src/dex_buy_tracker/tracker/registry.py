"""Reconciles watched pools against the pools current configs require."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from web3 import Web3

from dex_buy_tracker.tracker.cache import TTLCache
from dex_buy_tracker.tracker.connections import ConnectionManager
from dex_buy_tracker.tracker.models import (
    AlertConfig,
    ChainRuntime,
    DestinationId,
    PairRuntime,
    PoolCandidate,
    same_chain,
)

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_MIN_LIQUIDITY_USD = 10.0
DEFAULT_DISCOVERY_MAX_POOLS = 15


class AlertConfigSource(Protocol):
    """Live, mutable set of destination configs owned by persistence."""

    def items(self) -> Iterable[tuple[DestinationId, AlertConfig]]: ...

    def mark_dirty(self) -> None: ...


class PoolDiscovery(Protocol):
    async def discover_pools(self, token_address: str, chain: str) -> list[PoolCandidate]: ...


class PoolDiscoveryService:
    """Pool discovery behind a TTL cache; failures yield no candidates.

    Whatever the source returns is filtered again here: candidates from
    another chain or below the liquidity floor are dropped, and the rest are
    ranked by liquidity and capped.
    """

    def __init__(
        self,
        source: PoolDiscovery,
        cache: TTLCache[tuple[str, str], list[PoolCandidate]],
        *,
        min_liquidity_usd: float = DEFAULT_DISCOVERY_MIN_LIQUIDITY_USD,
        max_pools: int = DEFAULT_DISCOVERY_MAX_POOLS,
    ) -> None:
        self._source = source
        self._cache = cache
        self._min_liquidity = min_liquidity_usd
        self._max_pools = max_pools

    async def discover(self, token_address: str, chain: str) -> list[PoolCandidate]:
        key = (chain, token_address.lower())
        try:
            candidates = await self._cache.get_or_load(
                key, lambda: self._source.discover_pools(token_address, chain)
            )
        except Exception as e:
            logger.warning("Pool discovery failed for %s on %s: %s", token_address, chain, e)
            return []
        return self._rank(candidates, chain)

    def _rank(self, candidates: list[PoolCandidate], chain: str) -> list[PoolCandidate]:
        kept = [
            c
            for c in candidates
            if c.address
            and (not c.chain or same_chain(c.chain, chain))
            and c.liquidity_usd >= self._min_liquidity
        ]
        kept.sort(key=lambda c: c.liquidity_usd, reverse=True)
        return kept[: self._max_pools]


def required_pools(configs: Iterable[tuple[DestinationId, AlertConfig]]) -> dict[str, set[str]]:
    """Union of configured pool addresses per chain, lowercased."""
    required: dict[str, set[str]] = {}
    for _, config in configs:
        if not config.pair_addresses:
            continue
        pools = required.setdefault(config.chain, set())
        pools.update(p.lower() for p in config.pair_addresses)
    return required


@dataclass
class SyncReport:
    added: int = 0
    removed: int = 0
    discovered: int = 0
    skipped: int = 0

    @property
    def churn(self) -> int:
        return self.added + self.removed


class PairRegistry:
    """Creates and destroys PairRuntimes so they match the configured pools.

    Re-running :meth:`sync` with unchanged configuration touches nothing:
    existing PairRuntimes and their subscriptions are left as they are.
    """

    def __init__(
        self,
        configs: AlertConfigSource,
        connections: ConnectionManager,
        discovery: PoolDiscoveryService,
    ) -> None:
        self._configs = configs
        self._connections = connections
        self._discovery = discovery
        self._lock = asyncio.Lock()

    async def sync(self) -> SyncReport:
        """Run one reconciliation pass."""
        async with self._lock:
            report = SyncReport()
            required = required_pools(self._configs.items())
            await self._collect_garbage(required, report)
            await self._discover_missing(report)
            required = required_pools(self._configs.items())
            for chain, pools in required.items():
                await self._register_chain(chain, pools, report)

            if report.churn or report.discovered:
                logger.info(
                    "Pair sync: +%d -%d pools, %d configs auto-filled, %d skipped",
                    report.added,
                    report.removed,
                    report.discovered,
                    report.skipped,
                )
            return report

    async def _collect_garbage(self, required: dict[str, set[str]], report: SyncReport) -> None:
        for chain, runtime in list(self._connections.runtimes.items()):
            needed = required.get(chain, set())
            for address in list(runtime.pairs):
                if address in needed:
                    continue
                pair = runtime.pairs.pop(address)
                await self._connections.unsubscribe_pair(runtime.handle, pair)
                report.removed += 1
                logger.info("Stopped watching pool %s:%s", chain, address)

    async def _discover_missing(self, report: SyncReport) -> None:
        for destination, config in list(self._configs.items()):
            if config.pair_addresses:
                continue
            candidates = await self._discovery.discover(config.token_address, config.chain)
            if not candidates:
                continue
            # The config may have been edited while discovery was in flight.
            if config.pair_addresses or not self._still_configured(destination, config):
                continue
            config.pair_addresses = [c.address for c in candidates]
            self._configs.mark_dirty()
            report.discovered += 1
            logger.info(
                "Auto-filled %d pools for %s on %s",
                len(candidates),
                config.token_address,
                config.chain,
            )

    def _still_configured(self, destination: DestinationId, config: AlertConfig) -> bool:
        return any(d == destination and c is config for d, c in self._configs.items())

    def _is_required(self, chain: str, address: str) -> bool:
        return any(c.references_pool(chain, address) for _, c in self._configs.items())

    def tracked_token_for(self, chain: str, address: str) -> str | None:
        """Tracked token of the first config on ``chain`` that lists the pool."""
        for _, config in self._configs.items():
            if config.references_pool(chain, address):
                return config.token_address.lower()
        return None

    async def _register_chain(self, chain: str, pools: set[str], report: SyncReport) -> None:
        new_pools = [p for p in sorted(pools) if not self._is_tracked(chain, p)]
        if not new_pools:
            return

        runtime = await self._connections.ensure(chain)
        if runtime is None:
            return

        for address in new_pools:
            if not Web3.is_address(address):
                logger.warning("Skipping malformed pool address %s on %s", address, chain)
                report.skipped += 1
                continue
            if await self._register_pool(runtime, address):
                report.added += 1
            else:
                report.skipped += 1

    def _is_tracked(self, chain: str, address: str) -> bool:
        runtime = self._connections.get(chain)
        return runtime is not None and address in runtime.pairs

    def _runtime_is_current(self, runtime: ChainRuntime) -> bool:
        return self._connections.get(runtime.chain) is runtime

    async def _register_pool(self, runtime: ChainRuntime, address: str) -> bool:
        chain = runtime.chain
        try:
            token0, token1 = await runtime.handle.pair_tokens(address)
        except Exception as e:
            logger.warning("Failed to read pool tokens for %s:%s, retrying next sync: %s", chain, address, e)
            return False

        tracked = self.tracked_token_for(chain, address)
        if tracked is None or not self._runtime_is_current(runtime) or address in runtime.pairs:
            return False
        if tracked not in (token0, token1):
            logger.warning("Pool %s:%s does not hold tracked token %s", chain, address, tracked)

        pair = PairRuntime(address=address, token0=token0, token1=token1, tracked_token=tracked)
        handle = runtime.handle
        try:
            pair.subscriptions = await self._connections.subscribe_pair(handle, chain, pair)
        except Exception as e:
            logger.warning("Failed to subscribe to %s:%s: %s", chain, address, e)
            return False

        if (
            not self._runtime_is_current(runtime)
            or runtime.handle is not handle
            or address in runtime.pairs
            or not self._is_required(chain, address)
        ):
            await self._connections.unsubscribe_pair(handle, pair)
            return False

        runtime.pairs[address] = pair
        logger.info("Watching pool %s:%s (tracked token %s)", chain, address, tracked)
        return True
