"""Binance ticker client for native asset USD prices."""

from __future__ import annotations

import logging

import httpx

from dex_buy_tracker.clients.http import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS, JsonApiClient
from dex_buy_tracker.errors import TransientLookupError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.binance.com"

NATIVE_SYMBOLS: dict[str, str] = {
    "bsc": "BNBUSDT",
}
DEFAULT_NATIVE_SYMBOL = "ETHUSDT"


def ticker_symbol(chain: str) -> str:
    return NATIVE_SYMBOLS.get(chain.lower(), DEFAULT_NATIVE_SYMBOL)


class BinancePriceClient(JsonApiClient):
    """Spot ticker lookups for the native asset of each chain."""

    name = "Binance"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        client: httpx.AsyncClient | None = None,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        super().__init__(
            base_url,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            retry_backoff_seconds=retry_backoff_seconds,
            client=client,
        )

    async def native_price_usd(self, chain: str) -> float:
        """Return the USD price of ``chain``'s native asset.

        Raises:
            TransientLookupError: If the ticker is unreachable or unusable.
        """
        symbol = ticker_symbol(chain)
        payload = await self._get_json("/api/v3/ticker/price", params={"symbol": symbol})
        try:
            price = float(payload["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientLookupError(f"Unexpected {symbol} ticker payload: {payload!r}") from e
        if price <= 0:
            raise TransientLookupError(f"Non-positive {symbol} price: {price}")
        return price
