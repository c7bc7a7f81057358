"""Data models for the live tracking core."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dex_buy_tracker.tracker.connections import ChainHandle

DestinationId = int

# Market-data APIs sometimes report EVM chains by numeric id instead of slug.
CHAIN_NUMERIC_IDS: dict[str, int] = {
    "ethereum": 1,
    "bsc": 56,
    "base": 8453,
    "monad": 131316155,
}


def same_chain(reported: str, chain: str) -> bool:
    """Compare a chain reported by a market-data API against a chain slug."""
    reported = reported.lower()
    target = chain.lower()
    if reported == target:
        return True
    numeric = CHAIN_NUMERIC_IDS.get(target)
    return numeric is not None and reported == str(numeric)


class ProtocolVersion(str, Enum):
    """Pool generations whose swap events are decoded."""

    V2 = "v2"
    V3 = "v3"
    V4 = "v4"


class TransportKind(str, Enum):
    """How a chain handle receives events."""

    STREAMING = "streaming"
    POLLING = "polling"


@dataclass
class AlertConfig:
    """Operator configuration for one destination.

    Owned by the persistence collaborator; the core only reads it, except for
    writing back auto-discovered pool lists (followed by ``mark_dirty()``).
    """

    chain: str
    token_address: str
    pair_addresses: list[str] = field(default_factory=list)
    emoji: str = "🟢"
    min_buy_usd: float = 0.0
    max_buy_usd: float | None = None
    dollars_per_emoji: float = 50.0
    cooldown_seconds: float | None = None
    pair_address: str | None = None
    image_url: str | None = None
    image_file_id: str | None = None
    animation_file_id: str | None = None
    group_link: str | None = None

    def references_pool(self, chain: str, pool_address: str) -> bool:
        """Check if this config watches the given pool (case-insensitive)."""
        if self.chain != chain:
            return False
        pool = pool_address.lower()
        return any(p.lower() == pool for p in self.pair_addresses)


@dataclass
class PairRuntime:
    """One watched pool and its per-protocol event subscriptions."""

    address: str
    token0: str
    token1: str
    tracked_token: str
    subscriptions: dict[ProtocolVersion, str] = field(default_factory=dict)


@dataclass
class ChainRuntime:
    """Network handle and watched pools for one chain."""

    chain: str
    rpc_url: str
    transport: TransportKind
    handle: ChainHandle
    pairs: dict[str, PairRuntime] = field(default_factory=dict)


@dataclass(frozen=True)
class V2Swap:
    """Constant-product pool swap: four unsigned legs."""

    pool_address: str
    tx_hash: str
    block_number: int
    sender: str
    recipient: str
    amount0_in: int
    amount1_in: int
    amount0_out: int
    amount1_out: int


@dataclass(frozen=True)
class V3Swap:
    """Concentrated-liquidity pool swap: two signed net deltas."""

    pool_address: str
    tx_hash: str
    block_number: int
    sender: str
    recipient: str
    amount0: int
    amount1: int
    sqrt_price_x96: int
    liquidity: int
    tick: int


@dataclass(frozen=True)
class V4Swap:
    """V3-style swap that also reports the protocol fee."""

    pool_address: str
    tx_hash: str
    block_number: int
    sender: str
    recipient: str
    amount0: int
    amount1: int
    sqrt_price_x96: int
    liquidity: int
    tick: int
    protocol_fee: int


RawSwap = V2Swap | V3Swap | V4Swap


@dataclass(frozen=True)
class CanonicalSwap:
    """Protocol-independent trade record with four unsigned legs."""

    chain: str
    pool_address: str
    tx_hash: str
    block_number: int
    counterparty: str
    amount0_in: int
    amount1_in: int
    amount0_out: int
    amount1_out: int


@dataclass(frozen=True)
class BuyLegs:
    """The two legs that make a canonical swap a qualifying buy."""

    base_in: int
    token_out: int


@dataclass(frozen=True)
class PoolCandidate:
    """A pool returned by pool discovery."""

    address: str
    liquidity_usd: float
    chain: str = ""


@dataclass(frozen=True)
class NewPool:
    """A freshly created pool surfaced by the new-pool scanner."""

    address: str
    symbol: str
    liquidity_usd: float
    age_seconds: int
    source: str


@dataclass(frozen=True)
class PairDetails:
    """Pair-level market facts from the pair-detail lookup."""

    pair_address: str
    base_token_address: str
    base_token_symbol: str
    quote_token_address: str
    quote_token_symbol: str
    price_usd: float
    fdv: float
    volume_24h: float
    liquidity_usd: float

    @classmethod
    def from_dexscreener(cls, data: dict[str, Any]) -> PairDetails:
        """Create PairDetails from a DexScreener pair object."""
        base = data.get("baseToken") or {}
        quote = data.get("quoteToken") or {}
        volume = data.get("volume") or {}
        liquidity = data.get("liquidity") or {}
        return cls(
            pair_address=str(data.get("pairAddress") or "").lower(),
            base_token_address=str(base.get("address") or "").lower(),
            base_token_symbol=str(base.get("symbol") or ""),
            quote_token_address=str(quote.get("address") or "").lower(),
            quote_token_symbol=str(quote.get("symbol") or ""),
            price_usd=_to_float(data.get("priceUsd")),
            fdv=_to_float(data.get("fdv")),
            volume_24h=_to_float(volume.get("h24")),
            liquidity_usd=_to_float(liquidity.get("usd")),
        )


@dataclass(frozen=True)
class MarketSnapshot:
    """Enrichment result for one tracked token in one pool."""

    price_usd: float = 0.0
    symbol: str = "TOKEN"
    market_cap: float = 0.0
    volume_24h: float = 0.0
    liquidity_usd: float = 0.0
    decimals: int = 18


@dataclass(frozen=True)
class BuyAlert:
    """Fully enriched buy, ready to be rendered for one destination."""

    chain: str
    pair_address: str
    tx_hash: str
    buyer: str
    usd_value: float
    base_amount: Decimal
    token_amount: Decimal
    token_symbol: str
    price_usd: float
    market_cap: float
    volume_24h: float
    pair_liquidity_usd: float
    position_increase: int | None

    @property
    def rounded_usd(self) -> int:
        return round_usd(self.usd_value)


def round_usd(value: float) -> int:
    """Round a USD amount to the nearest dollar, halves away from zero."""
    quantized = Decimal(str(value)).quantize(Decimal(1), rounding="ROUND_HALF_UP")
    return int(quantized)


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
