"""DexScreener client: pool discovery and pair details."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dex_buy_tracker.clients.http import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS, JsonApiClient
from dex_buy_tracker.errors import TransientLookupError
from dex_buy_tracker.tracker.models import PairDetails, PoolCandidate, same_chain

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.dexscreener.com"
DEFAULT_MIN_LIQUIDITY_USD = 10.0
DEFAULT_MAX_POOLS = 15


def chain_matches(pair: dict[str, Any], chain: str) -> bool:
    """Check a DexScreener pair's chain against a chain slug."""
    chain_id = str(pair.get("chainId") or "")
    chain_name = str(pair.get("chain") or "")
    return same_chain(chain_id, chain) or (bool(chain_name) and chain_name.lower() == chain.lower())


def _liquidity(pair: dict[str, Any]) -> float:
    try:
        return float((pair.get("liquidity") or {}).get("usd") or 0.0)
    except (TypeError, ValueError):
        return 0.0


class DexScreenerClient(JsonApiClient):
    """Pool discovery and pair-detail lookups against the DexScreener API.

    Example:
        ```python
        client = DexScreenerClient()
        pools = await client.discover_pools("0xToken...", "bsc")
        details = await client.pair_details("bsc", pools[0].address)
        ```
    """

    name = "DexScreener"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        min_liquidity_usd: float = DEFAULT_MIN_LIQUIDITY_USD,
        max_pools: int = DEFAULT_MAX_POOLS,
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
        self._min_liquidity = min_liquidity_usd
        self._max_pools = max_pools

    async def discover_pools(self, token_address: str, chain: str) -> list[PoolCandidate]:
        """Rank the pools trading ``token_address`` on ``chain``.

        Keeps pools on the matching chain where the token is either side and
        liquidity is at least the floor, sorted by liquidity descending and
        capped. Any failure yields an empty list.
        """
        try:
            payload = await self._get_json(f"/latest/dex/tokens/{token_address}")
        except TransientLookupError as e:
            logger.warning("Pool discovery failed for %s on %s: %s", token_address, chain, e)
            return []

        pairs = payload.get("pairs") if isinstance(payload, dict) else None
        if not pairs:
            return []

        token = token_address.lower()
        candidates: list[PoolCandidate] = []
        for pair in pairs:
            if not isinstance(pair, dict) or not chain_matches(pair, chain):
                continue
            base = str((pair.get("baseToken") or {}).get("address") or "").lower()
            quote = str((pair.get("quoteToken") or {}).get("address") or "").lower()
            if token not in (base, quote):
                continue
            liquidity = _liquidity(pair)
            address = pair.get("pairAddress")
            if liquidity < self._min_liquidity or not address:
                continue
            candidates.append(PoolCandidate(address=str(address), liquidity_usd=liquidity, chain=chain))

        candidates.sort(key=lambda c: c.liquidity_usd, reverse=True)
        return candidates[: self._max_pools]

    async def pair_details(self, chain: str, pool_address: str) -> PairDetails | None:
        """Fetch price, volume, liquidity and symbols for one pool.

        Returns:
            PairDetails, or None if DexScreener does not know the pair.

        Raises:
            TransientLookupError: If the API could not be reached.
        """
        payload = await self._get_json(f"/latest/dex/pairs/{chain}/{pool_address}")
        if not isinstance(payload, dict):
            return None
        pair = payload.get("pair")
        if not isinstance(pair, dict):
            pairs = payload.get("pairs")
            pair = pairs[0] if isinstance(pairs, list) and pairs else None
        if not isinstance(pair, dict):
            return None
        return PairDetails.from_dexscreener(pair)
