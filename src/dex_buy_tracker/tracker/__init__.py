"""Live tracking core: connections, pool registry, decoding and enrichment."""

from dex_buy_tracker.tracker.coordinator import LiveBuyTracker, TrackerStatus
from dex_buy_tracker.tracker.models import (
    AlertConfig,
    BuyAlert,
    CanonicalSwap,
    ChainRuntime,
    PairRuntime,
    ProtocolVersion,
    TransportKind,
)

__all__ = [
    "AlertConfig",
    "BuyAlert",
    "CanonicalSwap",
    "ChainRuntime",
    "LiveBuyTracker",
    "PairRuntime",
    "ProtocolVersion",
    "TrackerStatus",
    "TransportKind",
]
