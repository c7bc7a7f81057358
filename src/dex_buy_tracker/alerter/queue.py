"""Per-destination ordered dispatch queue.

Work for one destination runs strictly one at a time in submission order.
Different destinations run concurrently. A failing unit of work is logged and
never blocks or cancels later work.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from dex_buy_tracker.tracker.models import DestinationId

logger = logging.getLogger(__name__)

Work = Callable[[], Awaitable[None]]


@dataclass
class QueueStats:
    submitted: int = 0
    completed: int = 0
    failed: int = 0


class DispatchQueue:
    """FIFO per destination, served by one worker task while it has work."""

    def __init__(self) -> None:
        self._queues: dict[DestinationId, deque[Work]] = {}
        self._workers: dict[DestinationId, asyncio.Task[None]] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False
        self._stats = QueueStats()

    @property
    def stats(self) -> QueueStats:
        return self._stats

    def pending(self, destination: DestinationId) -> int:
        queue = self._queues.get(destination)
        return len(queue) if queue else 0

    def submit(self, destination: DestinationId, work: Work) -> None:
        """Append ``work`` to the destination's queue."""
        if self._closed:
            logger.debug("Dropping work for %s: queue closed", destination)
            return
        self._queues.setdefault(destination, deque()).append(work)
        self._stats.submitted += 1
        self._idle.clear()
        if destination not in self._workers:
            self._workers[destination] = asyncio.create_task(
                self._drain(destination), name=f"dispatch-{destination}"
            )

    async def _drain(self, destination: DestinationId) -> None:
        queue = self._queues[destination]
        try:
            while queue:
                work = queue.popleft()
                try:
                    await work()
                    self._stats.completed += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._stats.failed += 1
                    logger.warning("Alert delivery to %s failed: %s", destination, e)
        finally:
            self._workers.pop(destination, None)
            if not queue:
                self._queues.pop(destination, None)
            if not self._workers:
                self._idle.set()

    async def join(self) -> None:
        """Wait until every submitted unit of work has run."""
        await self._idle.wait()

    async def close(self) -> None:
        """Stop accepting work and cancel the workers."""
        self._closed = True
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        for worker in workers:
            with contextlib.suppress(asyncio.CancelledError):
                await worker
        self._queues.clear()
        self._idle.set()
