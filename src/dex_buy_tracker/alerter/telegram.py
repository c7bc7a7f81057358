"""Telegram Bot API transport for buy alerts."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dex_buy_tracker.alerter.formatter import BuyAlertFormatter, FormattedAlert
from dex_buy_tracker.tracker.models import AlertConfig, BuyAlert, DestinationId

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.telegram.org"
DEFAULT_TIMEOUT_SECONDS = 15.0


class TelegramDeliveryError(Exception):
    """Raised when the Bot API rejects or fails a send."""


def media_method(config: AlertConfig) -> tuple[str, str, str] | None:
    """Pick (method, field, media) for the config's visual asset, if any."""
    if config.animation_file_id:
        return "sendAnimation", "animation", config.animation_file_id
    if config.image_file_id:
        return "sendPhoto", "photo", config.image_file_id
    if config.image_url:
        if config.image_url.lower().endswith(".gif"):
            return "sendAnimation", "animation", config.image_url
        return "sendPhoto", "photo", config.image_url
    return None


class TelegramAlertChannel:
    """Sends rendered buy alerts to Telegram chats.

    In dry-run mode messages are only logged.
    """

    def __init__(
        self,
        bot_token: str | None,
        *,
        formatter: BuyAlertFormatter,
        api_base_url: str = DEFAULT_API_BASE_URL,
        dry_run: bool = False,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._formatter = formatter
        self._api_base_url = api_base_url.rstrip("/")
        self._dry_run = dry_run or not bot_token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_request(self, destination: DestinationId, config: AlertConfig, formatted: FormattedAlert) -> tuple[str, dict[str, Any]]:
        """Return (Bot API method, JSON payload) for one alert."""
        payload: dict[str, Any] = {"chat_id": destination, "parse_mode": "HTML"}
        if formatted.buttons:
            payload["reply_markup"] = formatted.reply_markup

        media = media_method(config)
        if media is None:
            payload["text"] = formatted.text
            payload["disable_web_page_preview"] = True
            return "sendMessage", payload

        method, media_field, media_ref = media
        payload[media_field] = media_ref
        payload["caption"] = formatted.text
        return method, payload

    async def send_buy_alert(
        self,
        destination: DestinationId,
        config: AlertConfig,
        alert: BuyAlert,
    ) -> None:
        """Render and deliver one alert.

        Raises:
            TelegramDeliveryError: If the Bot API call fails.
        """
        formatted = self._formatter.format(alert, config)
        method, payload = self.build_request(destination, config, formatted)

        if self._dry_run:
            logger.info("[dry-run] %s to %s ($%d buy)\n%s", method, destination, alert.rounded_usd, formatted.text)
            return

        url = f"{self._api_base_url}/bot{self._bot_token}/{method}"
        try:
            response = await self._client.post(url, json=payload)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TelegramDeliveryError(f"{method} to {destination} failed: {e}") from e

        if not data.get("ok"):
            raise TelegramDeliveryError(
                f"{method} to {destination} rejected: {data.get('description', response.status_code)}"
            )
        logger.info("Alert sent: $%d to %s", alert.rounded_usd, destination)
