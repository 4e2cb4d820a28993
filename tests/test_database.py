"""Tests for storage/database.py: pool lifecycle and connectivity check."""

import pytest
from unittest.mock import AsyncMock, patch
from config.settings import settings
from storage import database
from storage.database import check_connection, close_pool, get_pool, redact_dsn


@pytest.fixture(autouse=True)
def reset_pool():
    database._pool = None
    yield
    database._pool = None


@pytest.fixture
def create_pool(fake_pool):
    fake_pool.close = AsyncMock()
    with patch("storage.database.asyncpg.create_pool", new=AsyncMock(return_value=fake_pool)) as mock:
        yield mock


class TestRedactDsn:
    def test_password_removed(self):
        assert redact_dsn("postgresql://bot:hunter2@db:5432/alerts") == "postgresql://bot@db:5432/alerts"

    def test_without_password_unchanged(self):
        assert redact_dsn("postgresql://db/alerts") == "postgresql://db/alerts"


class TestPool:
    async def test_sizes_from_settings(self, create_pool):
        await get_pool()
        kwargs = create_pool.call_args.kwargs
        assert create_pool.call_args.args == (settings.database_url,)
        assert kwargs["min_size"] == settings.db_pool_min_size
        assert kwargs["max_size"] == settings.db_pool_max_size
        assert kwargs["command_timeout"] == settings.db_command_timeout_seconds

    async def test_pool_created_once(self, create_pool, fake_pool):
        assert await get_pool() is fake_pool
        assert await get_pool() is fake_pool
        assert create_pool.await_count == 1

    async def test_close_resets(self, create_pool, fake_pool):
        await get_pool()
        await close_pool()
        fake_pool.close.assert_awaited_once()
        await get_pool()
        assert create_pool.await_count == 2

    async def test_close_without_pool(self):
        await close_pool()


class TestCheckConnection:
    async def test_reachable(self, create_pool):
        assert await check_connection() is True

    async def test_unreachable(self, create_pool, fake_conn):
        fake_conn.fetchval = AsyncMock(side_effect=OSError("connection refused"))
        assert await check_connection() is False
