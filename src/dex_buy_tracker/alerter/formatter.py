"""Buy alert message formatter.

This module turns an enriched BuyAlert plus the destination's AlertConfig
into a Telegram HTML message with inline buttons.
"""

from __future__ import annotations

import html
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from dex_buy_tracker.tracker.models import AlertConfig, BuyAlert, round_usd

DEXSCREENER_PAIR_URL = "https://dexscreener.com/{chain}/{pair}"
DEXTOOLS_PAIR_URL = "https://www.dextools.io/app/{network}/pair-explorer/{pair}"
TRENDING_URL = "https://t.me/trending"

DEFAULT_EXPLORERS: dict[str, str] = {
    "bsc": "https://bscscan.com",
    "ethereum": "https://etherscan.io",
    "base": "https://basescan.org",
}

# (emoji, symbol) of the base asset per chain
NATIVE_ASSETS: dict[str, tuple[str, str]] = {
    "bsc": ("🟡", "BNB"),
    "ethereum": ("🔹", "ETH"),
    "base": ("🟦", "ETH"),
}
DEFAULT_NATIVE_ASSET = ("💠", "NATIVE")

MAX_EMOJIS = 50
DEFAULT_DOLLARS_PER_EMOJI = 50.0

WHALE_THRESHOLD = 5000
BIG_BUY_THRESHOLD = 3000
STRONG_BUY_THRESHOLD = 1000
WHALE_LOADING_PERCENT = 500


@dataclass(frozen=True)
class FormattedAlert:
    """Rendered alert ready for a chat transport."""

    text: str
    buttons: list[dict[str, str]] = field(default_factory=list)

    @property
    def reply_markup(self) -> dict[str, Any]:
        return {"inline_keyboard": [self.buttons]}


def shorten_address(address: str, chars: int = 6) -> str:
    """Shorten an address to 0x1234...cdef format."""
    if len(address) <= chars * 2:
        return address
    return f"{address[:chars]}...{address[-(chars - 2):]}"


def emoji_bar(usd_value: float, emoji: str, dollars_per_emoji: float | None) -> str:
    """One emoji per ``dollars_per_emoji`` of the rounded buy, capped at 50."""
    per_emoji = dollars_per_emoji or DEFAULT_DOLLARS_PER_EMOJI
    count = math.floor(round_usd(usd_value) / per_emoji)
    return emoji * max(0, min(MAX_EMOJIS, count))


def header_line(usd: int) -> str:
    if usd >= WHALE_THRESHOLD:
        return "🐳 <b>WHALE INCOMING!!!</b> 🐳"
    if usd >= BIG_BUY_THRESHOLD:
        return "🚨🚨 <b>BIG BUY DETECTED!</b> 🚨🚨"
    if usd >= STRONG_BUY_THRESHOLD:
        return "🟢🟢🟢 <b>Strong Buy</b> 🟢🟢🟢"
    return "🟢 <b>New Buy</b> 🟢"


def format_compact_usd(value: float) -> str:
    """Format USD as 1.25M / 12K / 950."""
    if value >= 1_000_000:
        text = f"{value / 1_000_000:.2f}"
        return (text[:-3] if text.endswith(".00") else text) + "M"
    if value >= 1_000:
        return f"{round(value / 1_000)}K"
    return f"{value:.0f}"


def format_volume(value: float) -> str:
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    return f"{value / 1_000:.0f}K"


def format_token_amount(amount: Decimal) -> str:
    """Comma-grouped token amount; small amounts keep six decimals."""
    if amount < 1:
        text = f"{amount:,.6f}".rstrip("0").rstrip(".")
        return text or "0"
    return f"{amount:,.0f}"


class BuyAlertFormatter:
    """Formats buy alerts for Telegram (HTML parse mode)."""

    def __init__(
        self,
        *,
        explorers: dict[str, str] | None = None,
        ads_contact_url: str | None = None,
    ) -> None:
        self._explorers = {**DEFAULT_EXPLORERS, **(explorers or {})}
        self._ads_contact_url = ads_contact_url

    def explorer_for(self, chain: str) -> str:
        return self._explorers.get(chain.lower(), DEFAULT_EXPLORERS["ethereum"]).rstrip("/")

    def format(self, alert: BuyAlert, config: AlertConfig) -> FormattedAlert:
        """Render one alert for one destination."""
        usd = alert.rounded_usd
        chain = alert.chain.lower()
        explorer = self.explorer_for(chain)
        native_emoji, native_symbol = NATIVE_ASSETS.get(chain, DEFAULT_NATIVE_ASSET)
        symbol = html.escape(alert.token_symbol, quote=False)

        tx_url = f"{explorer}/tx/{alert.tx_hash}"
        buyer_url = f"{explorer}/address/{alert.buyer}"
        pair_url = f"{explorer}/address/{alert.pair_address}"
        dexscreener_url = DEXSCREENER_PAIR_URL.format(chain=chain, pair=alert.pair_address)
        dextools_url = DEXTOOLS_PAIR_URL.format(
            network="bsc" if chain == "bsc" else "ether",
            pair=alert.pair_address,
        )

        lines = [header_line(usd)]
        if alert.position_increase is not None and alert.position_increase > WHALE_LOADING_PERCENT:
            lines.append("🚀🚀 <b>WHALE LOADING!</b> 🚀🚀")
        lines.append("")
        lines.append(f"💰 <b>${usd:,}</b> {symbol} BUY")
        lines.append(emoji_bar(alert.usd_value, config.emoji, config.dollars_per_emoji))
        lines.append("")
        lines.append(
            f"{native_emoji} <b>{native_symbol}:</b> {alert.base_amount:.4f} (${usd:,})"
        )
        lines.append(f"💳 {symbol}: {format_token_amount(alert.token_amount)}")
        lines.append("")
        lines.append(
            f'🔗 <a href="{pair_url}">View Pair</a> → ${format_compact_usd(alert.pair_liquidity_usd)} LP'
        )
        lines.append("")
        lines.append(
            f'👤 Buyer: <a href="{buyer_url}">{html.escape(shorten_address(alert.buyer))}</a>'
        )
        lines.append(f'🔶 <a href="{tx_url}">View Transaction</a>')
        if alert.position_increase is not None:
            lines.append(f"🧠 <b>Position Increased: +{alert.position_increase}%</b>")
        market_cap = alert.market_cap / 1_000_000 if alert.market_cap > 0 else 0.0
        lines.append(f"📊 MC: ${market_cap:.2f}M")
        lines.append(f"🔥 Volume (24h): ${format_volume(alert.volume_24h)}")
        lines.append("")
        lines.append(
            f'🔗 <a href="{dextools_url}">DexT</a> | <a href="{dexscreener_url}">DexS</a>'
            f' | <a href="{TRENDING_URL}">Trending</a>'
        )

        buttons: list[dict[str, str]] = []
        if config.group_link:
            buttons.append({"text": "👥 Join Group", "url": config.group_link})
        if self._ads_contact_url:
            buttons.append({"text": "✉️ DM for Ads", "url": self._ads_contact_url})

        return FormattedAlert(text="\n".join(lines).strip(), buttons=buttons)
