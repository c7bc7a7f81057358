"""Tests for the database-backed alert configuration store."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from dex_buy_tracker.storage.config_store import ConfigStore
from dex_buy_tracker.storage.database import ConfigDatabase
from dex_buy_tracker.tracker.models import AlertConfig

TOKEN = "0x" + "11" * 20
POOL = "0x" + "33" * 20


@pytest.fixture
async def db(tmp_path):
    """File-backed SQLite database with the schema created."""
    manager = ConfigDatabase(f"sqlite+aiosqlite:///{tmp_path}/configs.db")
    await manager.create_schema()
    yield manager
    await manager.dispose()


async def _reloaded(db: ConfigDatabase) -> ConfigStore:
    store = ConfigStore(db)
    await store.load()
    return store


class TestConfigStore:
    """Tests for ConfigStore."""

    @pytest.mark.asyncio
    async def test_load_empty(self, db) -> None:
        store = ConfigStore(db)
        assert await store.load() == 0
        assert len(store) == 0
        assert not store.dirty

    @pytest.mark.asyncio
    async def test_set_is_persisted_in_background(self, db) -> None:
        store = ConfigStore(db)
        store.set(-100, AlertConfig(chain="bsc", token_address=TOKEN, pair_addresses=[POOL]))
        assert store.dirty

        await store.close()

        reloaded = await _reloaded(db)
        assert -100 in reloaded
        assert reloaded.get(-100).pair_addresses == [POOL]
        assert store.stats.flushes >= 1

    @pytest.mark.asyncio
    async def test_in_place_write_back_is_persisted(self, db) -> None:
        store = ConfigStore(db)
        config = AlertConfig(chain="bsc", token_address=TOKEN)
        store.set(-100, config)
        await store.flush()

        config.pair_addresses = [POOL, "0x" + "55" * 20]
        store.mark_dirty()
        await store.close()

        reloaded = await _reloaded(db)
        assert reloaded.get(-100).pair_addresses == [POOL, "0x" + "55" * 20]

    @pytest.mark.asyncio
    async def test_remove_is_persisted(self, db) -> None:
        store = ConfigStore(db)
        store.set(-100, AlertConfig(chain="bsc", token_address=TOKEN))
        store.set(-200, AlertConfig(chain="base", token_address=TOKEN))
        await store.flush()

        assert store.remove(-100) is not None
        assert store.remove(-100) is None
        await store.close()

        reloaded = await _reloaded(db)
        assert list(reloaded) == [-200]

    @pytest.mark.asyncio
    async def test_flush_failure_keeps_changes_dirty(self) -> None:
        broken = MagicMock()
        broken.session.side_effect = RuntimeError("database unavailable")
        store = ConfigStore(broken)

        store.set(-100, AlertConfig(chain="bsc", token_address=TOKEN))
        for _ in range(10):
            await asyncio.sleep(0)

        assert store.stats.flush_errors == 1
        assert store.dirty
        with pytest.raises(RuntimeError):
            await store.flush()

    def test_mark_dirty_without_running_loop(self) -> None:
        store = ConfigStore(MagicMock())
        store.set(-100, AlertConfig(chain="bsc", token_address=TOKEN))
        assert store.dirty
        assert store.items()[0][0] == -100
