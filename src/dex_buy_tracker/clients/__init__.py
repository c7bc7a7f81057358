"""HTTP collaborators for market data lookups."""

from dex_buy_tracker.clients.binance import BinancePriceClient
from dex_buy_tracker.clients.dexscreener import DexScreenerClient
from dex_buy_tracker.clients.geckoterminal import GeckoTerminalClient
from dex_buy_tracker.clients.http import JsonApiClient

__all__ = [
    "BinancePriceClient",
    "DexScreenerClient",
    "GeckoTerminalClient",
    "JsonApiClient",
]
