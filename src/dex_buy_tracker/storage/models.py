"""SQLAlchemy models for persistent storage.

This module defines the database schema for per-destination alert
configurations.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import JSON, BigInteger, DateTime, Index, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class AlertConfigModel(Base):
    """SQLAlchemy model for one destination's buy alert configuration."""

    __tablename__ = "alert_configs"

    # Telegram chat ids are signed 64-bit integers.
    destination_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    token_address: Mapped[str] = mapped_column(String(42), nullable=False)
    pair_address: Mapped[str | None] = mapped_column(String(66), nullable=True)
    pair_addresses: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    emoji: Mapped[str] = mapped_column(String(16), nullable=False, default="🟢")
    min_buy_usd: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    max_buy_usd: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    dollars_per_emoji: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("50")
    )
    cooldown_seconds: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    animation_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    group_link: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_alert_configs_chain_token", "chain", "token_address"),)
