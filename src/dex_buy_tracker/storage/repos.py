"""Repository pattern implementations for data access.

This module provides the data access abstraction for persisted alert
configurations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from dex_buy_tracker.storage.models import AlertConfigModel
from dex_buy_tracker.tracker.models import AlertConfig, DestinationId

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _to_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


@dataclass
class AlertConfigDTO:
    """Data transfer object for a destination's alert configuration."""

    destination_id: DestinationId
    config: AlertConfig
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AlertConfigModel) -> AlertConfigDTO:
        """Create DTO from SQLAlchemy model."""
        config = AlertConfig(
            chain=model.chain,
            token_address=model.token_address,
            pair_addresses=list(model.pair_addresses or []),
            emoji=model.emoji,
            min_buy_usd=float(model.min_buy_usd),
            max_buy_usd=_to_float(model.max_buy_usd),
            dollars_per_emoji=float(model.dollars_per_emoji),
            cooldown_seconds=_to_float(model.cooldown_seconds),
            pair_address=model.pair_address,
            image_url=model.image_url,
            image_file_id=model.image_file_id,
            animation_file_id=model.animation_file_id,
            group_link=model.group_link,
        )
        return cls(
            destination_id=model.destination_id,
            config=config,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


def _decimal(value: float | None) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


def _values(destination_id: DestinationId, config: AlertConfig) -> dict[str, Any]:
    return {
        "destination_id": destination_id,
        "chain": config.chain,
        "token_address": config.token_address,
        "pair_address": config.pair_address,
        "pair_addresses": list(config.pair_addresses),
        "emoji": config.emoji,
        "min_buy_usd": _decimal(config.min_buy_usd),
        "max_buy_usd": _decimal(config.max_buy_usd),
        "dollars_per_emoji": _decimal(config.dollars_per_emoji),
        "cooldown_seconds": _decimal(config.cooldown_seconds),
        "image_url": config.image_url,
        "image_file_id": config.image_file_id,
        "animation_file_id": config.animation_file_id,
        "group_link": config.group_link,
    }


class AlertConfigRepository:
    """Repository for per-destination alert configurations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, destination_id: DestinationId) -> AlertConfigDTO | None:
        result = await self.session.execute(
            select(AlertConfigModel)
            .where(AlertConfigModel.destination_id == destination_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return AlertConfigDTO.from_model(model) if model else None

    async def list_all(self) -> list[AlertConfigDTO]:
        result = await self.session.execute(
            select(AlertConfigModel)
            .order_by(AlertConfigModel.destination_id)
            .execution_options(populate_existing=True)
        )
        return [AlertConfigDTO.from_model(m) for m in result.scalars().all()]

    async def upsert(self, destination_id: DestinationId, config: AlertConfig) -> None:
        """Insert or replace the configuration for ``destination_id``."""
        values = _values(destination_id, config)
        now = datetime.now(UTC)
        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(AlertConfigModel).values(**values, created_at=now, updated_at=now)
        update_columns = {k: stmt.excluded[k] for k in values if k != "destination_id"}
        stmt = stmt.on_conflict_do_update(
            index_elements=["destination_id"],
            set_={**update_columns, "updated_at": now},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def upsert_many(self, configs: dict[DestinationId, AlertConfig]) -> int:
        for destination_id, config in configs.items():
            await self.upsert(destination_id, config)
        return len(configs)

    async def delete(self, destination_id: DestinationId) -> bool:
        result = await self.session.execute(
            delete(AlertConfigModel).where(AlertConfigModel.destination_id == destination_id)
        )
        await self.session.flush()
        return bool(getattr(result, "rowcount", 0))

    async def delete_missing(self, keep: set[DestinationId]) -> int:
        """Delete every configuration whose destination is not in ``keep``."""
        stmt = delete(AlertConfigModel)
        if keep:
            stmt = stmt.where(AlertConfigModel.destination_id.not_in(keep))
        result = await self.session.execute(stmt)
        await self.session.flush()
        return int(getattr(result, "rowcount", 0) or 0)
