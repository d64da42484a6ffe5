"""Tests for PostgresExecutor against a stand-in asyncpg pool."""

import logging
from typing import Any
from unittest.mock import AsyncMock

import anyio
import asyncpg
import pytest

from query_bridge.database import PostgresExecutor

pytestmark = pytest.mark.anyio


class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeConnection:
    def __init__(self, records: list[dict[str, Any]]):
        self.records = records
        self.transactions: list[dict[str, Any]] = []
        self.statements: list[tuple[str, tuple[Any, ...]]] = []

    def transaction(self, **kwargs: Any) -> FakeTransaction:
        self.transactions.append(kwargs)
        return FakeTransaction()

    async def fetch(self, statement: str, *args: Any) -> list[dict[str, Any]]:
        self.statements.append((statement, args))
        return self.records


class FakeAcquire:
    def __init__(self, connection: FakeConnection):
        self.connection = connection

    async def __aenter__(self) -> FakeConnection:
        return self.connection

    async def __aexit__(self, *exc_info):
        return False


class FakePool:
    def __init__(self, connection: FakeConnection):
        self.connection = connection
        self.closed = False

    def acquire(self) -> FakeAcquire:
        return FakeAcquire(self.connection)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection([{"now": "2024-01-01T00:00:00Z"}])


@pytest.fixture
def create_pool(monkeypatch: pytest.MonkeyPatch, connection: FakeConnection) -> AsyncMock:
    mock = AsyncMock(return_value=FakePool(connection))
    monkeypatch.setattr(asyncpg, "create_pool", mock)
    return mock


async def test_fetch_runs_in_read_only_transaction(create_pool: AsyncMock, connection: FakeConnection):
    executor = PostgresExecutor("postgresql://u@db/app", min_size=2, max_size=4, statement_timeout=5)

    result = await executor.fetch("SELECT $1::text AS now", "x")

    create_pool.assert_awaited_once_with(dsn="postgresql://u@db/app", min_size=2, max_size=4, command_timeout=5)
    assert connection.transactions == [{"readonly": True}]
    assert connection.statements == [("SELECT $1::text AS now", ("x",))]
    assert result.rows == [{"now": "2024-01-01T00:00:00Z"}]
    assert result.row_count == 1


async def test_pool_is_created_once(create_pool: AsyncMock):
    executor = PostgresExecutor("postgresql://u@db/app")

    async with anyio.create_task_group() as tg:
        for _ in range(5):
            tg.start_soon(executor.fetch, "SELECT 1")

    assert create_pool.await_count == 1


async def test_close_releases_pool(create_pool: AsyncMock):
    executor = PostgresExecutor("postgresql://u@db/app")
    await executor.open()
    pool = create_pool.return_value

    await executor.close()
    await executor.close()

    assert pool.closed


async def test_probe_success(create_pool: AsyncMock, caplog: pytest.LogCaptureFixture):
    executor = PostgresExecutor("postgresql://u@db/app")
    with caplog.at_level(logging.INFO, logger="query_bridge.database"):
        assert await executor.probe() is True
    assert "Connected to PostgreSQL" in caplog.text


async def test_probe_failure_is_logged_not_raised(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture):
    monkeypatch.setattr(asyncpg, "create_pool", AsyncMock(side_effect=OSError("connection refused")))
    executor = PostgresExecutor("postgresql://u@db/app")

    with caplog.at_level(logging.ERROR, logger="query_bridge.database"):
        assert await executor.probe() is False
    assert "Database connection failed: connection refused" in caplog.text
