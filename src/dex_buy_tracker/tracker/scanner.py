"""New-pool scanner: one polling loop per configured chain.

Surfaces freshly created pools in the logs. Nothing here feeds the pair
registry yet.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from dex_buy_tracker.tracker.models import NewPool

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_MIN_LIQUIDITY_USD = 5000.0
DEFAULT_MAX_AGE_SECONDS = 600
DEFAULT_TOP_N = 5


class NewPoolSource(Protocol):
    async def new_pools(
        self,
        chain: str,
        *,
        min_liquidity_usd: float,
        max_age_seconds: int,
    ) -> list[NewPool]: ...


@dataclass
class ScannerStats:
    scans: int = 0
    errors: int = 0
    pools_seen: int = 0


class NewPoolScanner:
    """Cancellable per-chain scan loops bound to the tracker lifecycle."""

    def __init__(
        self,
        source: NewPoolSource,
        chains: Iterable[str],
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        min_liquidity_usd: float = DEFAULT_MIN_LIQUIDITY_USD,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        top_n: int = DEFAULT_TOP_N,
    ) -> None:
        self._source = source
        self._chains = list(chains)
        self._interval = interval_seconds
        self._min_liquidity = min_liquidity_usd
        self._max_age = max_age_seconds
        self._top_n = top_n
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._stop_event: asyncio.Event | None = None
        self._stats: dict[str, ScannerStats] = {chain: ScannerStats() for chain in self._chains}

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def stats_for(self, chain: str) -> ScannerStats:
        return self._stats.setdefault(chain, ScannerStats())

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        for chain in self._chains:
            self._tasks[chain] = asyncio.create_task(self._run(chain), name=f"scanner-{chain}")
            logger.info("Started new-pool scanner for %s", chain)

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def scan_once(self, chain: str) -> list[NewPool]:
        """Run one scan for ``chain`` and log the top candidates."""
        stats = self.stats_for(chain)
        stats.scans += 1
        pools = await self._source.new_pools(
            chain,
            min_liquidity_usd=self._min_liquidity,
            max_age_seconds=self._max_age,
        )
        stats.pools_seen += len(pools)
        if pools:
            logger.info("%s: %d fresh pools detected", chain, len(pools))
            for pool in pools[: self._top_n]:
                logger.info(
                    "  %s | %s | liq $%.0f | age %ds | %s",
                    pool.symbol,
                    pool.address,
                    pool.liquidity_usd,
                    pool.age_seconds,
                    pool.source,
                )
        return pools

    async def _run(self, chain: str) -> None:
        stop_event = self._stop_event
        while stop_event is not None and not stop_event.is_set():
            try:
                await self.scan_once(chain)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.stats_for(chain).errors += 1
                logger.warning("New-pool scan failed for %s: %s", chain, e)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            except asyncio.CancelledError:
                break
