"""Application wiring: settings -> collaborators -> live buy tracker.

``BuyTrackerApp`` builds the concrete collaborators (HTTP clients, the
config store, the dispatch queue, the Telegram channel) and hands them to
``LiveBuyTracker`` through its boundary protocols.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from dex_buy_tracker.alerter.formatter import BuyAlertFormatter
from dex_buy_tracker.alerter.queue import DispatchQueue
from dex_buy_tracker.alerter.telegram import TelegramAlertChannel
from dex_buy_tracker.clients.binance import BinancePriceClient
from dex_buy_tracker.clients.dexscreener import DexScreenerClient
from dex_buy_tracker.clients.geckoterminal import GeckoTerminalClient
from dex_buy_tracker.config import Settings, get_settings
from dex_buy_tracker.storage.config_store import ConfigStore
from dex_buy_tracker.storage.database import ConfigDatabase
from dex_buy_tracker.tracker.coordinator import LiveBuyTracker

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECONDS = 10.0


class AppState(Enum):
    """Application lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class AppStats:
    started_at: datetime | None = None
    configs_loaded: int = 0
    last_error: str | None = None


class BuyTrackerApp:
    """Owns every long-lived resource of the running service.

    Example:
        ```python
        app = BuyTrackerApp(get_settings())
        await app.start()
        await app.wait_for_shutdown()
        await app.stop()
        ```
    """

    def __init__(self, settings: Settings | None = None, *, dry_run: bool | None = None) -> None:
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = AppState.STOPPED
        self._stats = AppStats()
        self._stop_event = asyncio.Event()

        self._db: ConfigDatabase | None = None
        self._store: ConfigStore | None = None
        self._dexscreener: DexScreenerClient | None = None
        self._binance: BinancePriceClient | None = None
        self._geckoterminal: GeckoTerminalClient | None = None
        self._queue: DispatchQueue | None = None
        self._telegram: TelegramAlertChannel | None = None
        self._tracker: LiveBuyTracker | None = None

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def stats(self) -> AppStats:
        return self._stats

    @property
    def tracker(self) -> LiveBuyTracker | None:
        return self._tracker

    @property
    def store(self) -> ConfigStore | None:
        return self._store

    async def start(self) -> None:
        """Initialize components and start tracking.

        Raises:
            RuntimeError: If the app is not stopped.
        """
        if self._state is not AppState.STOPPED:
            raise RuntimeError(f"Cannot start app in state {self._state}")

        self._state = AppState.STARTING
        logger.info("Starting DEX buy tracker: %s", self._settings.redacted_summary())
        try:
            tracker = await self._initialize_components()
            await tracker.start()
            self._stats.started_at = datetime.now(UTC)
            self._state = AppState.RUNNING
        except Exception as e:
            self._state = AppState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start: %s", e)
            await self._cleanup()
            self._state = AppState.STOPPED
            raise

    async def _initialize_components(self) -> LiveBuyTracker:
        settings = self._settings
        api = settings.api

        self._db = ConfigDatabase(settings.database.url)
        await self._db.create_schema()
        self._store = ConfigStore(self._db)
        self._stats.configs_loaded = await self._store.load()

        self._dexscreener = DexScreenerClient(
            api.dexscreener_base_url,
            timeout_seconds=api.request_timeout_seconds,
            max_retries=api.max_retries,
            min_liquidity_usd=settings.tracker.discovery_min_liquidity_usd,
            max_pools=settings.tracker.discovery_max_pools,
        )
        self._binance = BinancePriceClient(
            api.binance_base_url,
            timeout_seconds=api.request_timeout_seconds,
            max_retries=api.max_retries,
        )
        if settings.scanner.enabled:
            self._geckoterminal = GeckoTerminalClient(
                api.geckoterminal_base_url,
                timeout_seconds=api.request_timeout_seconds,
                max_retries=api.max_retries,
            )

        endpoints = settings.chains.endpoints()
        formatter = BuyAlertFormatter(
            explorers={chain: e.explorer for chain, e in endpoints.items()},
            ads_contact_url=settings.telegram.ads_contact_url,
        )
        token = settings.telegram.bot_token
        self._telegram = TelegramAlertChannel(
            token.get_secret_value() if token else None,
            formatter=formatter,
            api_base_url=settings.telegram.api_base_url,
            dry_run=self._dry_run,
        )
        self._queue = DispatchQueue()

        self._tracker = LiveBuyTracker(
            configs=self._store,
            endpoints=endpoints,
            pair_source=self._dexscreener,
            price_source=self._binance,
            pool_discovery=self._dexscreener,
            dispatch=self._queue,
            transport=self._telegram,
            new_pool_source=self._geckoterminal,
            settings=settings.tracker,
            scanner_settings=settings.scanner,
        )
        return self._tracker

    def request_shutdown(self) -> None:
        self._stop_event.set()

    async def wait_for_shutdown(self) -> None:
        await self._stop_event.wait()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops; Ctrl+C still raises there.
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.request_shutdown)

    async def stop(self) -> None:
        """Stop tracking, drain pending alerts, flush configs, release resources."""
        if self._state is AppState.STOPPED:
            return
        self._state = AppState.STOPPING
        logger.info("Stopping DEX buy tracker...")

        if self._tracker is not None:
            await self._tracker.shutdown()
        if self._queue is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=DRAIN_TIMEOUT_SECONDS)
            except TimeoutError:
                logger.warning("Dropping undelivered alerts after %.0fs", DRAIN_TIMEOUT_SECONDS)
        await self._cleanup()

        self._state = AppState.STOPPED
        logger.info("DEX buy tracker stopped")

    async def _cleanup(self) -> None:
        if self._queue is not None:
            await self._queue.close()
            self._queue = None
        for client in (self._telegram, self._dexscreener, self._binance, self._geckoterminal):
            if client is not None:
                await client.close()
        self._telegram = self._dexscreener = self._binance = self._geckoterminal = None

        if self._store is not None:
            try:
                await self._store.close()
            except Exception as e:
                logger.warning("Final config flush failed: %s", e)
            self._store = None
        if self._db is not None:
            await self._db.dispose()
            self._db = None
        logger.debug("Resources cleaned up")


async def run(settings: Settings, *, dry_run: bool | None = None) -> None:
    """Run the service until SIGINT/SIGTERM."""
    app = BuyTrackerApp(settings, dry_run=dry_run)
    await app.start()
    app.install_signal_handlers()
    try:
        await app.wait_for_shutdown()
    finally:
        await app.stop()


async def init_db(settings: Settings) -> None:
    """Create the schema without going through alembic."""
    db = ConfigDatabase(settings.database.url)
    try:
        await db.create_schema()
    finally:
        await db.dispose()
