# tests/infra/test_database.py
"""
Тесты менеджера базы данных.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from fulfillment.infra.database import DatabaseManager, _init_schema, retry_on_connection_error


@pytest.fixture
def db_manager() -> DatabaseManager:
    """Свежий DatabaseManager (синглтон сбрасывается)."""
    DatabaseManager._instance = None
    DatabaseManager._pool = None
    return DatabaseManager()


def _pool_with(conn: AsyncMock) -> MagicMock:
    @asynccontextmanager
    async def acquire():
        yield conn

    pool = MagicMock()
    pool.acquire = acquire
    pool.close = AsyncMock()
    return pool


class TestRetryOnConnectionError:
    @pytest.mark.asyncio
    async def test_retries_connection_errors(self) -> None:
        calls = 0

        @retry_on_connection_error(max_attempts=3, delay=0)
        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionRefusedError("refused")
            return "ok"

        assert await flaky() == "ok"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        @retry_on_connection_error(max_attempts=2, delay=0)
        async def always_down():
            raise ConnectionRefusedError("refused")

        with pytest.raises(ConnectionRefusedError):
            await always_down()

    @pytest.mark.asyncio
    async def test_sql_errors_not_retried(self) -> None:
        calls = 0

        @retry_on_connection_error(max_attempts=3, delay=0)
        async def bad_query():
            nonlocal calls
            calls += 1
            raise ValueError("syntax")

        with pytest.raises(ValueError):
            await bad_query()
        assert calls == 1


class TestDatabaseManager:
    def test_singleton(self, db_manager: DatabaseManager) -> None:
        assert DatabaseManager() is db_manager

    def test_pool_not_initialized(self, db_manager: DatabaseManager) -> None:
        with pytest.raises(RuntimeError, match="Пул соединений не инициализирован"):
            _ = db_manager.pool

    @pytest.mark.asyncio
    async def test_connect_creates_pool_once(self, db_manager: DatabaseManager) -> None:
        pool = _pool_with(AsyncMock())
        with patch("asyncpg.create_pool", AsyncMock(return_value=pool)) as create_pool:
            await db_manager.connect(dsn="postgresql://u:p@localhost/edmich", min_size=1, max_size=2)
            await db_manager.connect(dsn="postgresql://u:p@localhost/edmich")

        create_pool.assert_awaited_once()
        assert db_manager.pool is pool

    @pytest.mark.asyncio
    async def test_fetchval_uses_pool(self, db_manager: DatabaseManager) -> None:
        conn = AsyncMock()
        conn.fetchval = AsyncMock(return_value=1)
        db_manager._pool = _pool_with(conn)

        assert await db_manager.fetchval("SELECT 1") == 1
        conn.fetchval.assert_awaited_once_with("SELECT 1", column=0)

    @pytest.mark.asyncio
    async def test_transaction_wraps_connection(self, db_manager: DatabaseManager) -> None:
        conn = AsyncMock()
        tx = MagicMock()
        tx.__aenter__ = AsyncMock(return_value=None)
        tx.__aexit__ = AsyncMock(return_value=None)
        conn.transaction = MagicMock(return_value=tx)
        db_manager._pool = _pool_with(conn)

        async with db_manager.transaction() as connection:
            assert connection is conn

        tx.__aenter__.assert_awaited_once()
        tx.__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check_false_on_error(self, db_manager: DatabaseManager) -> None:
        assert await db_manager.health_check() is False

    @pytest.mark.asyncio
    async def test_disconnect(self, db_manager: DatabaseManager) -> None:
        pool = _pool_with(AsyncMock())
        db_manager._pool = pool

        await db_manager.disconnect()

        pool.close.assert_awaited_once()
        assert db_manager._pool is None


class TestInitSchema:
    @pytest.mark.asyncio
    async def test_schema_applied_under_lock(self, mock_db, mock_conn) -> None:
        await _init_schema(mock_db)

        statements = [call.args[0] for call in mock_conn.execute.call_args_list]
        assert statements[0].startswith("SELECT pg_advisory_xact_lock")
        assert "CREATE TABLE IF NOT EXISTS" in statements[1]

    @pytest.mark.asyncio
    async def test_deadlock_tolerated(self, mock_db, mock_conn) -> None:
        mock_conn.execute.side_effect = asyncpg.DeadlockDetectedError("deadlock")

        await _init_schema(mock_db)
