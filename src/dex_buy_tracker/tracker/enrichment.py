"""Enrichment of accepted swaps with price, liquidity and precision data.

Every lookup here degrades to a default instead of failing: an enrichment
problem must never suppress an otherwise qualifying alert.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Protocol

from dex_buy_tracker.tracker.cache import TTLCache
from dex_buy_tracker.tracker.models import MarketSnapshot, PairDetails

logger = logging.getLogger(__name__)

DEFAULT_DECIMALS = 18
MAX_DECIMALS = 36
DEFAULT_SYMBOL = "TOKEN"
# Supply assumed when a pair reports no FDV.
ASSUMED_TOTAL_SUPPLY = 1_000_000_000_000_000

FALLBACK_NATIVE_PRICES: dict[str, float] = {
    "bsc": 875.0,
}
DEFAULT_FALLBACK_NATIVE_PRICE = 3400.0


class PairDetailSource(Protocol):
    async def pair_details(self, chain: str, pool_address: str) -> PairDetails | None: ...


class NativePriceSource(Protocol):
    async def native_price_usd(self, chain: str) -> float: ...


class DecimalsReader(Protocol):
    async def token_decimals(self, token: str) -> int: ...


def fallback_native_price(chain: str) -> float:
    return FALLBACK_NATIVE_PRICES.get(chain.lower(), DEFAULT_FALLBACK_NATIVE_PRICE)


def snapshot_from_details(details: PairDetails | None, token_address: str) -> MarketSnapshot:
    """Project pair-level facts onto the tracked token.

    The pair price is quoted for the base token, so it is inverted when the
    tracked token is the quote side.
    """
    if details is None:
        return MarketSnapshot()

    token = token_address.lower()
    price = 0.0
    symbol = DEFAULT_SYMBOL
    if details.base_token_address == token:
        price = details.price_usd
        symbol = details.base_token_symbol or DEFAULT_SYMBOL
    elif details.quote_token_address == token:
        price = 1 / details.price_usd if details.price_usd else 0.0
        symbol = details.quote_token_symbol or DEFAULT_SYMBOL

    market_cap = details.fdv
    if market_cap == 0 and price > 0:
        market_cap = price * ASSUMED_TOTAL_SUPPLY

    return MarketSnapshot(
        price_usd=price,
        symbol=symbol,
        market_cap=market_cap,
        volume_24h=details.volume_24h,
        liquidity_usd=details.liquidity_usd,
    )


class EnrichmentPipeline:
    """Resolves market data for swaps through the shared TTL caches."""

    def __init__(
        self,
        *,
        pair_source: PairDetailSource,
        price_source: NativePriceSource,
        pair_cache: TTLCache[tuple[str, str], PairDetails | None],
        native_price_cache: TTLCache[str, float],
        decimals_cache: TTLCache[tuple[str, str], int],
    ) -> None:
        self._pair_source = pair_source
        self._price_source = price_source
        self._pair_cache = pair_cache
        self._native_price_cache = native_price_cache
        self._decimals_cache = decimals_cache

    async def pair_details(self, chain: str, pool_address: str) -> PairDetails | None:
        """Cached pair details; None when unknown or the lookup failed."""
        key = (chain, pool_address.lower())
        try:
            return await self._pair_cache.get_or_load(
                key, lambda: self._pair_source.pair_details(chain, pool_address)
            )
        except Exception as e:
            logger.warning("Pair detail lookup failed for %s:%s: %s", chain, pool_address, e)
            return None

    async def native_price(self, chain: str) -> float:
        """Cached native asset USD price, falling back to a per-chain default."""

        async def load() -> float:
            try:
                return await self._price_source.native_price_usd(chain)
            except Exception as e:
                fallback = fallback_native_price(chain)
                logger.warning(
                    "Native price lookup failed for %s, using fallback %.2f: %s",
                    chain,
                    fallback,
                    e,
                )
                return fallback

        return await self._native_price_cache.get_or_load(chain, load)

    async def token_decimals(self, chain: str, reader: DecimalsReader, token_address: str) -> int:
        """On-chain decimal precision, bounded to 0-36 with an 18 default."""

        async def load() -> int:
            value = await reader.token_decimals(token_address)
            if not isinstance(value, int) or not 0 <= value <= MAX_DECIMALS:
                logger.warning(
                    "Implausible decimals %r for %s on %s, using %d",
                    value,
                    token_address,
                    chain,
                    DEFAULT_DECIMALS,
                )
                return DEFAULT_DECIMALS
            return value

        try:
            return await self._decimals_cache.get_or_load((chain, token_address.lower()), load)
        except Exception as e:
            logger.warning(
                "Decimals lookup failed for %s on %s, using %d: %s",
                token_address,
                chain,
                DEFAULT_DECIMALS,
                e,
            )
            return DEFAULT_DECIMALS

    async def snapshot(
        self,
        chain: str,
        pool_address: str,
        token_address: str,
        reader: DecimalsReader,
    ) -> MarketSnapshot:
        """Full market snapshot for the tracked token in one pool."""
        details = await self.pair_details(chain, pool_address)
        base = snapshot_from_details(details, token_address)
        decimals = await self.token_decimals(chain, reader, token_address)
        return replace(base, decimals=decimals)
