"""Swap handler: from a raw pool log to queued per-destination alerts."""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from dex_buy_tracker.errors import MalformedInputError
from dex_buy_tracker.tracker.connections import ConnectionManager
from dex_buy_tracker.tracker.cooldown import GateDecision
from dex_buy_tracker.tracker.decoder import classify_buy, decode_swap_log, normalize
from dex_buy_tracker.tracker.enrichment import EnrichmentPipeline
from dex_buy_tracker.tracker.models import AlertConfig, BuyAlert, DestinationId, ProtocolVersion
from dex_buy_tracker.tracker.position import PositionTracker
from dex_buy_tracker.tracker.registry import AlertConfigSource, PoolDiscoveryService
from dex_buy_tracker.tracker.state import TrackerState

logger = logging.getLogger(__name__)

# Base legs are wrapped native assets.
BASE_DECIMALS = 18


class DispatchQueue(Protocol):
    """Per-destination ordered delivery of asynchronous work."""

    def submit(self, destination: DestinationId, work: Callable[[], Awaitable[None]]) -> None: ...


class AlertTransport(Protocol):
    async def send_buy_alert(
        self,
        destination: DestinationId,
        config: AlertConfig,
        alert: BuyAlert,
    ) -> None: ...


@dataclass
class HandlerStats:
    logs_received: int = 0
    malformed: int = 0
    buys: int = 0
    dispatched: int = 0
    filtered: int = 0
    stale: int = 0


class SwapHandler:
    """Decodes, enriches, gates and queues buys for every related destination."""

    def __init__(
        self,
        *,
        configs: AlertConfigSource,
        connections: ConnectionManager,
        state: TrackerState,
        enrichment: EnrichmentPipeline,
        positions: PositionTracker,
        discovery: PoolDiscoveryService,
        dispatch: DispatchQueue,
        transport: AlertTransport,
    ) -> None:
        self._configs = configs
        self._connections = connections
        self._state = state
        self._enrichment = enrichment
        self._positions = positions
        self._discovery = discovery
        self._dispatch = dispatch
        self._transport = transport
        self._stats = HandlerStats()

    @property
    def stats(self) -> HandlerStats:
        return self._stats

    def related_destinations(self, chain: str, pool_address: str) -> list[tuple[DestinationId, AlertConfig]]:
        return [
            (destination, config)
            for destination, config in self._configs.items()
            if config.references_pool(chain, pool_address)
        ]

    async def handle_log(
        self,
        chain: str,
        pool_address: str,
        version: ProtocolVersion,
        log: Mapping[str, Any],
    ) -> None:
        """Process one swap log delivered by a pool subscription."""
        self._stats.logs_received += 1
        generation = self._state.generation

        runtime = self._connections.get(chain)
        pair = runtime.pairs.get(pool_address) if runtime is not None else None
        if runtime is None or pair is None:
            return

        try:
            swap = normalize(decode_swap_log(log, version), chain)
        except MalformedInputError as e:
            self._stats.malformed += 1
            logger.warning("Skipping undecodable %s log on %s:%s: %s", version.value, chain, pool_address, e)
            return

        legs = classify_buy(swap, pair)
        if legs is None:
            return

        related = self.related_destinations(chain, pool_address)
        if not related:
            return
        self._stats.buys += 1

        primary = related[0][1]
        await self._refresh_pools(primary)

        handle = runtime.handle
        token = pair.tracked_token
        snapshot = await self._enrichment.snapshot(chain, pool_address, token, handle)
        native_price = await self._enrichment.native_price(chain)

        base_amount = Decimal(legs.base_in) / Decimal(10**BASE_DECIMALS)
        usd_value = float(base_amount) * native_price
        token_amount = Decimal(legs.token_out) / Decimal(10**snapshot.decimals)
        position = await self._positions.position_increase(handle, swap, token, legs.token_out, usd_value)

        pool_liquidity = snapshot.liquidity_usd
        if primary.pair_addresses:
            candidates = await self._discovery.discover(primary.token_address, chain)
            if candidates:
                pool_liquidity = candidates[0].liquidity_usd

        if not self._state.is_current(generation):
            self._stats.stale += 1
            logger.debug("Dropping buy %s started before shutdown or cache clear", swap.tx_hash)
            return

        alert = BuyAlert(
            chain=chain,
            pair_address=pool_address,
            tx_hash=swap.tx_hash,
            buyer=swap.counterparty,
            usd_value=usd_value,
            base_amount=base_amount,
            token_amount=token_amount,
            token_symbol=snapshot.symbol,
            price_usd=snapshot.price_usd,
            market_cap=snapshot.market_cap,
            volume_24h=snapshot.volume_24h,
            pair_liquidity_usd=pool_liquidity,
            position_increase=position,
        )

        # Destinations may have been removed while enrichment was in flight.
        for destination, config in self.related_destinations(chain, pool_address):
            decision = self._state.cooldowns.check(destination, pool_address, usd_value, config)
            if decision is not GateDecision.ACCEPTED:
                self._stats.filtered += 1
                logger.debug(
                    "Buy %s ($%.2f) not alerted to %s: %s",
                    swap.tx_hash,
                    usd_value,
                    destination,
                    decision.value,
                )
                continue
            self._dispatch.submit(
                destination,
                functools.partial(self._transport.send_buy_alert, destination, config, alert),
            )
            self._stats.dispatched += 1

    async def _refresh_pools(self, config: AlertConfig) -> None:
        """Re-run discovery for configs that know at most one pool."""
        if len(config.pair_addresses) > 1:
            return
        candidates = await self._discovery.discover(config.token_address, config.chain)
        if not candidates or len(config.pair_addresses) > 1:
            return
        addresses = [c.address for c in candidates]
        if {a.lower() for a in addresses} == {a.lower() for a in config.pair_addresses}:
            return
        config.pair_addresses = addresses
        self._configs.mark_dirty()
        logger.info(
            "Auto-filled %d pools for %s on %s",
            len(addresses),
            config.token_address,
            config.chain,
        )
