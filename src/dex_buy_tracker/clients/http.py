"""Shared JSON-over-HTTP plumbing for third-party market data APIs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from dex_buy_tracker.errors import TransientLookupError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5


class JsonApiClient:
    """Small httpx wrapper with retry and rate-limit handling.

    Subclasses set ``name`` for log messages and call :meth:`_get_json`.
    """

    name = "api"

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._max_retries = max(1, max_retries)
        self._backoff = max(0.0, retry_backoff_seconds)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``base_url + path`` and decode the JSON body.

        Raises:
            TransientLookupError: If every attempt failed.
        """
        url = f"{self.base_url}{path}"
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                response = await self.client.get(url, params=params)
                if response.status_code == 429:
                    retry_after = response.headers.get("Retry-After")
                    delay = float(retry_after) if retry_after else self._backoff * (attempt + 1)
                    logger.warning("%s rate limited, retrying in %.1fs", self.name, delay)
                    last_error = TransientLookupError(f"{self.name} rate limited")
                    await asyncio.sleep(delay)
                    continue
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(self._backoff)
                    continue

        raise TransientLookupError(f"{self.name} request failed for {url}: {last_error}")
