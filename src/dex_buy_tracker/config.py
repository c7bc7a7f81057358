"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
DEX buy tracker, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_ENDPOINT_SCHEMES = ("http://", "https://", "ws://", "wss://")


@dataclass(frozen=True)
class ChainEndpoint:
    """Network endpoint and explorer for one configured chain."""

    chain: str
    rpc_url: str
    explorer: str

    @property
    def is_streaming(self) -> bool:
        return self.rpc_url.startswith(("ws://", "wss://"))


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./dex_buy_tracker.db",
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class ChainSettings(BaseSettings):
    """Per-chain RPC endpoints and block explorers.

    An empty RPC URL means the chain is not configured. A ``ws(s)://``
    endpoint selects the streaming transport, anything else is polled.
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    bsc_rpc_url: str = Field(default="", alias="BSC_RPC_URL")
    bsc_explorer: str = Field(default="https://bscscan.com", alias="BSC_EXPLORER")
    ethereum_rpc_url: str = Field(default="", alias="ETH_RPC_URL")
    ethereum_explorer: str = Field(default="https://etherscan.io", alias="ETH_EXPLORER")
    base_rpc_url: str = Field(default="", alias="BASE_RPC_URL")
    base_explorer: str = Field(default="https://basescan.org", alias="BASE_EXPLORER")

    @field_validator("bsc_rpc_url", "ethereum_rpc_url", "base_rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        v = v.strip()
        if v and not v.startswith(_ENDPOINT_SCHEMES):
            raise ValueError("RPC URL must be an HTTP(S) or WS(S) endpoint")
        return v

    @field_validator("bsc_explorer", "ethereum_explorer", "base_explorer")
    @classmethod
    def strip_explorer(cls, v: str) -> str:
        return v.rstrip("/")

    def endpoints(self) -> dict[str, ChainEndpoint]:
        """Return the chains that have a network endpoint configured."""
        candidates = (
            ChainEndpoint("bsc", self.bsc_rpc_url, self.bsc_explorer),
            ChainEndpoint("ethereum", self.ethereum_rpc_url, self.ethereum_explorer),
            ChainEndpoint("base", self.base_rpc_url, self.base_explorer),
        )
        return {c.chain: c for c in candidates if c.rpc_url}


class TrackerSettings(BaseSettings):
    """Live tracking core tunables."""

    model_config = SettingsConfigDict(env_prefix="TRACKER_", extra="ignore")

    sync_interval_seconds: float = Field(
        default=15.0,
        alias="TRACKER_SYNC_INTERVAL_SECONDS",
        ge=1.0,
        le=3600.0,
        description="Interval of the health check + pair registry reconciliation cycle",
    )
    pair_cache_ttl_seconds: float = Field(
        default=15.0,
        alias="TRACKER_PAIR_CACHE_TTL_SECONDS",
        ge=0.0,
        le=3600.0,
        description="TTL for cached pair details (price, volume, liquidity)",
    )
    native_price_ttl_seconds: float = Field(
        default=30.0,
        alias="TRACKER_NATIVE_PRICE_TTL_SECONDS",
        ge=0.0,
        le=3600.0,
        description="TTL for cached native asset USD prices",
    )
    decimals_ttl_seconds: float = Field(
        default=3600.0,
        alias="TRACKER_DECIMALS_TTL_SECONDS",
        ge=0.0,
        le=86_400.0,
        description="TTL for cached token decimal precision",
    )
    discovery_ttl_seconds: float = Field(
        default=60.0,
        alias="TRACKER_DISCOVERY_TTL_SECONDS",
        ge=0.0,
        le=3600.0,
        description="TTL for cached pool discovery results",
    )
    default_cooldown_seconds: float = Field(
        default=3.0,
        alias="TRACKER_DEFAULT_COOLDOWN_SECONDS",
        ge=0.0,
        le=86_400.0,
        description="Per destination+pool cooldown when the config does not set one",
    )
    position_min_usd: float = Field(
        default=100.0,
        alias="TRACKER_POSITION_MIN_USD",
        ge=0.0,
        description="Minimum buy value before historical balance queries are issued",
    )
    discovery_min_liquidity_usd: float = Field(
        default=10.0,
        alias="TRACKER_DISCOVERY_MIN_LIQUIDITY_USD",
        ge=0.0,
        description="Liquidity floor for auto-discovered pools",
    )
    discovery_max_pools: int = Field(
        default=15,
        alias="TRACKER_DISCOVERY_MAX_POOLS",
        ge=1,
        le=100,
        description="Maximum number of auto-discovered pools per config",
    )
    resync_delay_seconds: float = Field(
        default=2.0,
        alias="TRACKER_RESYNC_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Delay before re-syncing after a manual cache clear",
    )
    reconnect_initial_delay_seconds: float = Field(
        default=1.0,
        alias="TRACKER_RECONNECT_INITIAL_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
    )
    reconnect_max_delay_seconds: float = Field(
        default=60.0,
        alias="TRACKER_RECONNECT_MAX_DELAY_SECONDS",
        ge=1.0,
        le=3600.0,
    )
    reconnect_jitter: float = Field(
        default=0.2,
        alias="TRACKER_RECONNECT_JITTER",
        ge=0.0,
        le=1.0,
        description="Relative jitter applied to reconnect delays",
    )
    poll_interval_seconds: float = Field(
        default=4.0,
        alias="TRACKER_POLL_INTERVAL_SECONDS",
        ge=0.5,
        le=300.0,
        description="eth_getLogs poll interval for HTTP endpoints",
    )
    poll_max_block_span: int = Field(
        default=500,
        alias="TRACKER_POLL_MAX_BLOCK_SPAN",
        ge=1,
        le=10_000,
        description="Maximum block range requested per eth_getLogs poll",
    )


class ScannerSettings(BaseSettings):
    """New-pool scanner settings."""

    model_config = SettingsConfigDict(env_prefix="SCANNER_", extra="ignore")

    enabled: bool = Field(default=True, alias="SCANNER_ENABLED")
    interval_seconds: float = Field(
        default=30.0,
        alias="SCANNER_INTERVAL_SECONDS",
        ge=10.0,
        le=300.0,
    )
    min_liquidity_usd: float = Field(
        default=5000.0,
        alias="SCANNER_MIN_LIQUIDITY_USD",
        ge=0.0,
    )
    max_age_seconds: int = Field(
        default=600,
        alias="SCANNER_MAX_AGE_SECONDS",
        ge=1,
        le=86_400,
    )
    top_n: int = Field(default=5, alias="SCANNER_TOP_N", ge=1, le=100)


class ApiSettings(BaseSettings):
    """Third-party HTTP API settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    dexscreener_base_url: str = Field(
        default="https://api.dexscreener.com",
        alias="DEXSCREENER_API_BASE",
    )
    geckoterminal_base_url: str = Field(
        default="https://api.geckoterminal.com/api/v2",
        alias="GECKOTERMINAL_API_BASE",
    )
    binance_base_url: str = Field(
        default="https://api.binance.com",
        alias="BINANCE_API_BASE",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        alias="API_TIMEOUT_SECONDS",
        ge=1.0,
        le=120.0,
    )
    max_retries: int = Field(default=2, alias="API_MAX_RETRIES", ge=1, le=10)

    @field_validator("dexscreener_base_url", "geckoterminal_base_url", "binance_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("API base URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    api_base_url: str = Field(
        default="https://api.telegram.org",
        alias="TELEGRAM_API_BASE",
    )
    ads_contact_url: str = Field(
        default="https://t.me/yourusername",
        alias="TELEGRAM_ADS_CONTACT_URL",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram delivery is enabled."""
        return self.bot_token is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from dex_buy_tracker.config import get_settings

        settings = get_settings()
        print(settings.chains.endpoints())
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chains: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    tracker: TrackerSettings = Field(
        default_factory=lambda: TrackerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scanner: ScannerSettings = Field(
        default_factory=lambda: ScannerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    api: ApiSettings = Field(
        default_factory=lambda: ApiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual alerts",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "chains": {
                chain: self._redact_url(endpoint.rpc_url)
                for chain, endpoint in self.chains.endpoints().items()
            },
            "tracker": {
                "sync_interval_seconds": str(self.tracker.sync_interval_seconds),
                "default_cooldown_seconds": str(self.tracker.default_cooldown_seconds),
                "position_min_usd": str(self.tracker.position_min_usd),
            },
            "scanner": {
                "enabled": str(self.scanner.enabled),
                "interval_seconds": str(self.scanner.interval_seconds),
            },
            "telegram_enabled": str(self.telegram.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self) -> None:
        """Refuse to run without at least one chain and a delivery channel."""
        if not self.chains.endpoints():
            raise ValueError("At least one of BSC_RPC_URL/ETH_RPC_URL/BASE_RPC_URL is required")
        if not self.telegram.enabled and not self.dry_run:
            raise ValueError("TELEGRAM_BOT_TOKEN is required unless DRY_RUN is set")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials or API keys embedded in a URL."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
            return url
        if "://" in url:
            # Hosted RPC providers embed the API key as the last path segment.
            head, sep, tail = url.rpartition("/")
            if sep and len(tail) >= 16 and head.count("/") >= 2:
                return f"{head}/***"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
