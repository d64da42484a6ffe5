import os
from typing import Any

import anyio
import pytest
import sse_starlette
from packaging import version

from query_bridge.capabilities import CapabilityRegistry, register_database_tools
from query_bridge.database import QueryResult
from query_bridge.server import BridgeServer


@pytest.fixture
def anyio_backend():
    return "asyncio"


SSE_STARLETTE_VERSION = version.parse(sse_starlette.__version__)
NEEDS_RESET = SSE_STARLETTE_VERSION < version.parse("3.0.0")


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Reset sse-starlette's global AppStatus singleton before each test.

    AppStatus.should_exit_event is a global asyncio.Event that gets bound to
    an event loop. Only needed for sse-starlette < 3.0.0, which keeps it at
    module level.
    """
    if not NEEDS_RESET:
        yield
        return

    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]
    yield
    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]


BRIDGE_ENV_VARS = ("DATABASE_URL", "PORT")


@pytest.fixture(autouse=True)
def clean_bridge_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Keep the developer's environment and .env file out of Settings."""
    for name in list(os.environ):
        if name.startswith("QUERY_BRIDGE_") or name in BRIDGE_ENV_VARS:
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


class FakeExecutor:
    """QueryExecutor double that records statements and tracks overlap."""

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.rows = rows if rows is not None else []
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.active = 0
        self.max_active = 0

    async def fetch(self, statement: str, *args: Any) -> QueryResult:
        self.calls.append((statement, args))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await anyio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return QueryResult(rows=list(self.rows), row_count=len(self.rows))
        finally:
            self.active -= 1


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor(rows=[{"table_name": "orders"}, {"table_name": "users"}])


@pytest.fixture
def registry(executor: FakeExecutor) -> CapabilityRegistry:
    return register_database_tools(CapabilityRegistry(), executor, max_rows=5)


@pytest.fixture
def server(registry: CapabilityRegistry) -> BridgeServer:
    return BridgeServer(registry, name="test-bridge", version="9.9.9")
