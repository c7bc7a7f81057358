"""Per destination+pool throttle with min/max USD filters."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from dex_buy_tracker.tracker.models import AlertConfig, DestinationId, round_usd

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 3.0


class GateDecision(str, Enum):
    ACCEPTED = "accepted"
    BELOW_MIN = "below_min"
    ABOVE_MAX = "above_max"
    COOLING_DOWN = "cooling_down"


def cooldown_key(destination: DestinationId, pool_address: str) -> str:
    return f"{destination}:{pool_address.lower()}"


class CooldownGate:
    """Decides whether a buy may be alerted to a destination.

    USD bounds are checked first against the value rounded to the nearest
    dollar, then the cooldown window for the (destination, pool) key. The
    window timestamp only moves when an alert is accepted.
    """

    def __init__(
        self,
        *,
        default_cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_cooldown = default_cooldown_seconds
        self._clock = clock
        self._last_accepted: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._last_accepted)

    def cooldown_for(self, config: AlertConfig) -> float:
        if config.cooldown_seconds is None:
            return self._default_cooldown
        return max(0.0, config.cooldown_seconds)

    def check(
        self,
        destination: DestinationId,
        pool_address: str,
        usd_value: float,
        config: AlertConfig,
    ) -> GateDecision:
        """Evaluate a buy and record it when accepted."""
        usd = round_usd(usd_value)
        if usd < config.min_buy_usd:
            return GateDecision.BELOW_MIN
        if config.max_buy_usd and usd > config.max_buy_usd:
            return GateDecision.ABOVE_MAX

        key = cooldown_key(destination, pool_address)
        now = self._clock()
        last = self._last_accepted.get(key)
        if last is not None and now - last < self.cooldown_for(config):
            logger.debug("Cooldown active for %s (%.2fs since last alert)", key, now - last)
            return GateDecision.COOLING_DOWN

        self._last_accepted[key] = now
        return GateDecision.ACCEPTED

    def clear(self) -> None:
        self._last_accepted.clear()
