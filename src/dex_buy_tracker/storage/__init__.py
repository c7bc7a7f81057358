"""Storage layer - persistence of alert configurations."""

from dex_buy_tracker.storage.config_store import ConfigStore
from dex_buy_tracker.storage.database import ConfigDatabase
from dex_buy_tracker.storage.models import AlertConfigModel, Base
from dex_buy_tracker.storage.repos import AlertConfigDTO, AlertConfigRepository

__all__ = [
    "AlertConfigDTO",
    "AlertConfigModel",
    "AlertConfigRepository",
    "Base",
    "ConfigStore",
    "ConfigDatabase",
]
