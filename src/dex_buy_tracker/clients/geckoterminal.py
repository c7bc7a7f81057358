"""GeckoTerminal client for freshly created pools."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from dex_buy_tracker.clients.http import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS, JsonApiClient
from dex_buy_tracker.tracker.models import NewPool

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.geckoterminal.com/api/v2"

NETWORK_IDS: dict[str, str] = {
    "ethereum": "eth",
    "bsc": "bsc",
    "base": "base",
}


def _parse_created_at(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _symbol_from_name(name: str) -> str:
    # Pool names look like "PEPE / WETH 0.3%".
    head = name.split("/")[0].strip()
    return head or "?"


class GeckoTerminalClient(JsonApiClient):
    """Lists new pools per network, filtered by liquidity and age."""

    name = "GeckoTerminal"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        client: httpx.AsyncClient | None = None,
        retry_backoff_seconds: float = 0.5,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(
            base_url,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            retry_backoff_seconds=retry_backoff_seconds,
            client=client,
        )
        self._now = now or (lambda: datetime.now(UTC))

    async def new_pools(
        self,
        chain: str,
        *,
        min_liquidity_usd: float,
        max_age_seconds: int,
    ) -> list[NewPool]:
        """Return pools younger than ``max_age_seconds`` with enough liquidity.

        Raises:
            TransientLookupError: If the API could not be reached.
        """
        network = NETWORK_IDS.get(chain.lower())
        if network is None:
            logger.debug("No GeckoTerminal network for chain %s", chain)
            return []

        payload = await self._get_json(f"/networks/{network}/new_pools")
        items = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return []

        now = self._now()
        pools: list[NewPool] = []
        for item in items:
            attributes = item.get("attributes") if isinstance(item, dict) else None
            if not isinstance(attributes, dict):
                continue
            created_at = _parse_created_at(attributes.get("pool_created_at"))
            address = attributes.get("address")
            if created_at is None or not address:
                continue
            age = int((now - created_at).total_seconds())
            try:
                liquidity = float(attributes.get("reserve_in_usd") or 0.0)
            except (TypeError, ValueError):
                liquidity = 0.0
            if age > max_age_seconds or liquidity < min_liquidity_usd:
                continue
            pools.append(
                NewPool(
                    address=str(address),
                    symbol=_symbol_from_name(str(attributes.get("name") or "")),
                    liquidity_usd=liquidity,
                    age_seconds=max(0, age),
                    source="geckoterminal",
                )
            )

        pools.sort(key=lambda p: p.liquidity_usd, reverse=True)
        return pools
