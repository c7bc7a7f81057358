"""Buyer position-size change from historical balance reads."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from dex_buy_tracker.tracker.models import CanonicalSwap

logger = logging.getLogger(__name__)

DEFAULT_POSITION_MIN_USD = 100.0


class BalanceReader(Protocol):
    async def balance_of(self, token: str, holder: str, block: int) -> int: ...


def percent_increase(previous: int, purchased: int) -> int | None:
    """Percentage growth of a balance, rounded to the nearest integer.

    Returns None when the previous balance is zero, where growth is undefined.
    """
    if previous <= 0:
        return None
    increase = Decimal(purchased) * 100 / Decimal(previous)
    return int(increase.quantize(Decimal(1), rounding=ROUND_HALF_UP))


class PositionTracker:
    """Computes how much a buy grew the buyer's tracked-token position."""

    def __init__(self, *, min_usd: float = DEFAULT_POSITION_MIN_USD) -> None:
        self._min_usd = min_usd

    async def position_increase(
        self,
        reader: BalanceReader,
        swap: CanonicalSwap,
        token_address: str,
        purchased: int,
        usd_value: float,
    ) -> int | None:
        """Return the percentage increase, or None when it is unknown.

        Unknown covers buys below the USD floor, a zero prior balance and any
        failed balance query.
        """
        if usd_value < self._min_usd:
            return None

        block = max(0, swap.block_number - 1)
        try:
            previous = await reader.balance_of(token_address, swap.counterparty, block)
        except Exception as e:
            logger.warning(
                "Balance query failed for %s on %s at block %d: %s",
                swap.counterparty,
                swap.chain,
                block,
                e,
            )
            previous = 0

        return percent_increase(int(previous), purchased)
