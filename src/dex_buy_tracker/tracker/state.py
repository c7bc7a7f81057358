"""Runtime state owned by one tracker instance."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from dex_buy_tracker.config import TrackerSettings
from dex_buy_tracker.tracker.cache import TTLCache
from dex_buy_tracker.tracker.cooldown import CooldownGate
from dex_buy_tracker.tracker.models import PairDetails, PoolCandidate


@dataclass
class TrackerState:
    """Caches, cooldowns and the runtime generation.

    The generation is bumped on shutdown and on a full cache clear; work that
    started under an older generation drops its results.
    """

    pair_cache: TTLCache[tuple[str, str], PairDetails | None]
    native_price_cache: TTLCache[str, float]
    decimals_cache: TTLCache[tuple[str, str], int]
    discovery_cache: TTLCache[tuple[str, str], list[PoolCandidate]]
    cooldowns: CooldownGate
    generation: int = 0

    @classmethod
    def from_settings(
        cls,
        settings: TrackerSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> TrackerState:
        return cls(
            pair_cache=TTLCache(settings.pair_cache_ttl_seconds, name="pair", clock=clock),
            native_price_cache=TTLCache(
                settings.native_price_ttl_seconds, name="native_price", clock=clock
            ),
            decimals_cache=TTLCache(settings.decimals_ttl_seconds, name="decimals", clock=clock),
            discovery_cache=TTLCache(
                settings.discovery_ttl_seconds, name="discovery", clock=clock
            ),
            cooldowns=CooldownGate(
                default_cooldown_seconds=settings.default_cooldown_seconds,
                clock=clock,
            ),
        )

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def advance(self) -> int:
        self.generation += 1
        return self.generation

    def clear(self) -> None:
        """Wipe cooldowns and every cache."""
        self.cooldowns.clear()
        self.pair_cache.clear()
        self.native_price_cache.clear()
        self.decimals_cache.clear()
        self.discovery_cache.clear()
