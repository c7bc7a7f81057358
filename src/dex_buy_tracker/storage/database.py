"""Async engine and transactional sessions for the alert config store."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dex_buy_tracker.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def to_async_url(url: str) -> str:
    """Point a plain ``postgresql://`` URL at the asyncpg driver."""
    if url.startswith("postgresql://"):
        logger.warning("Config store URL has no async driver; using asyncpg")
        return "postgresql+asyncpg://" + url[len("postgresql://") :]
    return url


class ConfigDatabase:
    """Lazily-created engine backing the ``alert_configs`` table.

    SQLite files hold a single bot's configs, so pool sizing only applies to
    PostgreSQL.

    Example:
        ```python
        db = ConfigDatabase("sqlite+aiosqlite:///alerts.db")
        await db.create_schema()
        async with db.session() as session:
            rows = await AlertConfigRepository(session).list_all()
        await db.dispose()
        ```
    """

    def __init__(self, url: str, *, pool_size: int = 5, max_overflow: int = 10, echo: bool = False) -> None:
        self.url = to_async_url(url)
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def _engine_or_create(self) -> AsyncEngine:
        if self._engine is None:
            options: dict[str, object] = {"echo": self._echo}
            if not self.is_sqlite:
                options.update(pool_size=self._pool_size, max_overflow=self._max_overflow)
            self._engine = create_async_engine(self.url, **options)
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on clean exit and rolls back on error."""
        if self._sessions is None:
            self._sessions = async_sessionmaker(bind=self._engine_or_create(), expire_on_commit=False)

        session = self._sessions()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_schema(self) -> None:
        """Create the config tables if they do not exist yet."""
        async with self._engine_or_create().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Config store schema ready")

    async def dispose(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Config store connections closed")
