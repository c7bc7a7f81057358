"""Live buy tracker: the coordinator owning all tracking state.

One ``LiveBuyTracker`` owns the connection manager, the pair registry, the
caches and cooldowns, and the scanner loops. Every component receives its
collaborators from here, so independent instances never share state.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from dex_buy_tracker.config import ChainEndpoint, ScannerSettings, TrackerSettings
from dex_buy_tracker.tracker.connections import ConnectionManager, HandleFactory, create_chain_handle
from dex_buy_tracker.tracker.enrichment import EnrichmentPipeline, NativePriceSource, PairDetailSource
from dex_buy_tracker.tracker.handler import AlertTransport, DispatchQueue, SwapHandler
from dex_buy_tracker.tracker.models import ProtocolVersion
from dex_buy_tracker.tracker.position import PositionTracker
from dex_buy_tracker.tracker.registry import (
    AlertConfigSource,
    PairRegistry,
    PoolDiscovery,
    PoolDiscoveryService,
    SyncReport,
)
from dex_buy_tracker.tracker.scanner import NewPoolScanner, NewPoolSource
from dex_buy_tracker.tracker.state import TrackerState

logger = logging.getLogger(__name__)


class TrackerStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class CycleResult:
    """Outcome of one health check + registry sync cycle."""

    repaired_chains: list[str]
    report: SyncReport


class LiveBuyTracker:
    """Start, stop and reset the live tracking core.

    Example:
        ```python
        tracker = LiveBuyTracker(
            configs=store,
            endpoints=settings.chains.endpoints(),
            pair_source=dexscreener,
            price_source=binance,
            pool_discovery=dexscreener,
            dispatch=queue,
            transport=telegram,
            settings=settings.tracker,
        )
        await tracker.start()
        ...
        await tracker.shutdown()
        ```
    """

    def __init__(
        self,
        *,
        configs: AlertConfigSource,
        endpoints: Mapping[str, ChainEndpoint],
        pair_source: PairDetailSource,
        price_source: NativePriceSource,
        pool_discovery: PoolDiscovery,
        dispatch: DispatchQueue,
        transport: AlertTransport,
        new_pool_source: NewPoolSource | None = None,
        settings: TrackerSettings | None = None,
        scanner_settings: ScannerSettings | None = None,
        handle_factory: HandleFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._settings = settings or TrackerSettings()
        self._state = TrackerState.from_settings(self._settings, clock=clock)

        factory = handle_factory or functools.partial(
            create_chain_handle,
            poll_interval_seconds=self._settings.poll_interval_seconds,
            poll_max_block_span=self._settings.poll_max_block_span,
        )
        self._connections = ConnectionManager(
            endpoints,
            on_log=self._on_log,
            handle_factory=factory,
            reconnect_initial_delay=self._settings.reconnect_initial_delay_seconds,
            reconnect_max_delay=self._settings.reconnect_max_delay_seconds,
            reconnect_jitter=self._settings.reconnect_jitter,
            rng=rng,
            clock=clock,
        )
        self._discovery = PoolDiscoveryService(
            pool_discovery,
            self._state.discovery_cache,
            min_liquidity_usd=self._settings.discovery_min_liquidity_usd,
            max_pools=self._settings.discovery_max_pools,
        )
        self._registry = PairRegistry(configs, self._connections, self._discovery)
        self._handler = SwapHandler(
            configs=configs,
            connections=self._connections,
            state=self._state,
            enrichment=EnrichmentPipeline(
                pair_source=pair_source,
                price_source=price_source,
                pair_cache=self._state.pair_cache,
                native_price_cache=self._state.native_price_cache,
                decimals_cache=self._state.decimals_cache,
            ),
            positions=PositionTracker(min_usd=self._settings.position_min_usd),
            discovery=self._discovery,
            dispatch=dispatch,
            transport=transport,
        )

        self._scanner: NewPoolScanner | None = None
        scanner_settings = scanner_settings or ScannerSettings()
        if new_pool_source is not None and scanner_settings.enabled:
            self._scanner = NewPoolScanner(
                new_pool_source,
                endpoints.keys(),
                interval_seconds=scanner_settings.interval_seconds,
                min_liquidity_usd=scanner_settings.min_liquidity_usd,
                max_age_seconds=scanner_settings.max_age_seconds,
                top_n=scanner_settings.top_n,
            )

        self._status = TrackerStatus.IDLE
        self._stop_event: asyncio.Event | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._resync_task: asyncio.Task[None] | None = None

    @property
    def status(self) -> TrackerStatus:
        return self._status

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    @property
    def registry(self) -> PairRegistry:
        return self._registry

    @property
    def handler(self) -> SwapHandler:
        return self._handler

    @property
    def scanner(self) -> NewPoolScanner | None:
        return self._scanner

    async def _on_log(
        self,
        chain: str,
        pool_address: str,
        version: ProtocolVersion,
        log: Mapping[str, Any],
    ) -> None:
        await self._handler.handle_log(chain, pool_address, version, log)

    async def start(self) -> None:
        """Begin the sync cycle and the per-chain scanners."""
        if self._status is TrackerStatus.RUNNING:
            raise RuntimeError("Tracker already running")
        self._status = TrackerStatus.RUNNING
        self._stop_event = asyncio.Event()
        self._sync_task = asyncio.create_task(self._sync_loop(), name="tracker-sync")
        if self._scanner is not None:
            self._scanner.start()
        logger.info(
            "Live buy tracker started (chains=%s, sync every %.0fs)",
            ",".join(self._connections.configured_chains) or "-",
            self._settings.sync_interval_seconds,
        )

    async def sync_once(self) -> CycleResult:
        """Repair dead connections, then reconcile the watched pools."""
        repaired = await self._connections.check_health()
        report = await self._registry.sync()
        return CycleResult(repaired_chains=repaired, report=report)

    async def _sync_loop(self) -> None:
        stop_event = self._stop_event
        while stop_event is not None and not stop_event.is_set():
            try:
                await self.sync_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Sync cycle failed: %s", e)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._settings.sync_interval_seconds)
            except TimeoutError:
                pass
            except asyncio.CancelledError:
                break

    async def shutdown(self) -> None:
        """Tear down every loop, subscription and connection. Idempotent."""
        if self._status is TrackerStatus.STOPPED:
            return
        self._status = TrackerStatus.STOPPED
        self._state.advance()
        if self._stop_event is not None:
            self._stop_event.set()

        for task in (self._sync_task, self._resync_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._sync_task = None
        self._resync_task = None

        if self._scanner is not None:
            await self._scanner.stop()
        await self._connections.close_all()
        logger.info("Live buy tracker shut down")

    async def clear_caches(self) -> None:
        """Drop connections, pools, cooldowns and caches, then resync shortly."""
        self._state.advance()
        await self._connections.close_all()
        self._state.clear()
        logger.info("Tracker caches cleared")

        if self._status is not TrackerStatus.RUNNING:
            return
        if self._resync_task is not None and not self._resync_task.done():
            self._resync_task.cancel()
        self._resync_task = asyncio.create_task(self._delayed_resync(), name="tracker-resync")

    async def _delayed_resync(self) -> None:
        await asyncio.sleep(self._settings.resync_delay_seconds)
        try:
            await self.sync_once()
        except Exception as e:
            logger.warning("Sync after cache clear failed: %s", e)
