"""Live alert configuration store backed by the database.

The tracker reads and mutates the in-memory mapping directly. Writes reach
the database asynchronously: ``mark_dirty()`` only schedules a flush.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterator
from dataclasses import dataclass

from dex_buy_tracker.storage.database import ConfigDatabase
from dex_buy_tracker.storage.repos import AlertConfigRepository
from dex_buy_tracker.tracker.models import AlertConfig, DestinationId

logger = logging.getLogger(__name__)


@dataclass
class ConfigStoreStats:
    """Statistics for persistence activity."""

    loaded: int = 0
    flushes: int = 0
    flush_errors: int = 0


class ConfigStore:
    """Mutable destination -> AlertConfig mapping with deferred persistence.

    Example:
        ```python
        store = ConfigStore(db)
        await store.load()
        store.set(-100123, AlertConfig(chain="bsc", token_address="0x..."))
        await store.close()  # flushes pending writes
        ```
    """

    def __init__(self, db: ConfigDatabase) -> None:
        self._db = db
        self._configs: dict[DestinationId, AlertConfig] = {}
        self._dirty = False
        self._flush_task: asyncio.Task[None] | None = None
        self._flush_lock = asyncio.Lock()
        self._stats = ConfigStoreStats()

    @property
    def stats(self) -> ConfigStoreStats:
        return self._stats

    @property
    def dirty(self) -> bool:
        return self._dirty

    def __len__(self) -> int:
        return len(self._configs)

    def __contains__(self, destination: object) -> bool:
        return destination in self._configs

    def __iter__(self) -> Iterator[DestinationId]:
        return iter(list(self._configs))

    def items(self) -> list[tuple[DestinationId, AlertConfig]]:
        return list(self._configs.items())

    def get(self, destination: DestinationId) -> AlertConfig | None:
        return self._configs.get(destination)

    def set(self, destination: DestinationId, config: AlertConfig) -> None:
        self._configs[destination] = config
        self.mark_dirty()

    def remove(self, destination: DestinationId) -> AlertConfig | None:
        config = self._configs.pop(destination, None)
        if config is not None:
            self.mark_dirty()
        return config

    async def load(self) -> int:
        """Replace the in-memory mapping with the persisted configurations."""
        async with self._db.session() as session:
            rows = await AlertConfigRepository(session).list_all()
        self._configs = {row.destination_id: row.config for row in rows}
        self._dirty = False
        self._stats.loaded = len(self._configs)
        logger.info("Loaded %d alert configurations", len(self._configs))
        return len(self._configs)

    def mark_dirty(self) -> None:
        """Schedule a background flush. Never blocks and never raises."""
        self._dirty = True
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the next flush() or close() persists the change.
            return
        self._flush_task = loop.create_task(self._background_flush())

    async def _background_flush(self) -> None:
        try:
            await self.flush()
        except Exception as e:
            self._stats.flush_errors += 1
            logger.warning("Deferred config flush failed, will retry on next change: %s", e)

    async def flush(self) -> None:
        """Write the current mapping to the database if it changed."""
        async with self._flush_lock:
            while self._dirty:
                self._dirty = False
                snapshot = dict(self._configs)
                try:
                    async with self._db.session() as session:
                        repo = AlertConfigRepository(session)
                        await repo.upsert_many(snapshot)
                        removed = await repo.delete_missing(set(snapshot))
                except Exception:
                    self._dirty = True
                    raise
                self._stats.flushes += 1
                logger.debug("Flushed %d alert configurations (%d removed)", len(snapshot), removed)

    async def close(self) -> None:
        """Wait for an in-flight flush and persist anything still pending."""
        if self._flush_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task
            self._flush_task = None
        if self._dirty:
            await self.flush()
