"""Database collaborator.

Capabilities only ever see the :class:`QueryExecutor` protocol: run one
parameterized read-only statement, get rows and a row count back. The
PostgreSQL implementation keeps the asyncpg pool behind that port.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import anyio
import asyncpg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0


class QueryExecutor(Protocol):
    """Minimal protocol used by the database capabilities."""

    async def fetch(self, statement: str, *args: Any) -> QueryResult: ...


class PostgresExecutor:
    """Runs statements on a shared asyncpg pool, each in a read-only transaction.

    The pool is created lazily by the first query when :meth:`open` was not
    called, so a database that is down at startup does not stop the process.
    """

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        statement_timeout: float | None = 30.0,
    ) -> None:
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.statement_timeout = statement_timeout
        self._pool: asyncpg.Pool | None = None
        self._open_lock = anyio.Lock()

    async def open(self) -> None:
        async with self._open_lock:
            if self._pool is None:
                self._pool = await asyncpg.create_pool(
                    dsn=self.dsn,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=self.statement_timeout,
                )

    async def close(self) -> None:
        if self._pool is not None:
            pool, self._pool = self._pool, None
            await pool.close()

    async def fetch(self, statement: str, *args: Any) -> QueryResult:
        await self.open()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            async with conn.transaction(readonly=True):
                records = await conn.fetch(statement, *args)
        rows = [dict(record) for record in records]
        return QueryResult(rows=rows, row_count=len(rows))

    async def probe(self) -> bool:
        """Check connectivity once and log the outcome; never raises."""
        try:
            result = await self.fetch("SELECT NOW() AS now")
        except (OSError, TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            logger.error("Database connection failed: %s", exc)
            return False
        logger.info("Connected to PostgreSQL (server time %s)", result.rows[0]["now"])
        return True
