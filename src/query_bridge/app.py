"""Application wiring: settings -> executor -> registry -> server -> ASGI app."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette

from query_bridge import __version__
from query_bridge.capabilities import CapabilityRegistry, register_database_tools
from query_bridge.config import Settings
from query_bridge.database import PostgresExecutor, QueryExecutor
from query_bridge.server import BridgeServer
from query_bridge.transport.httphandler import SessionIdChannel
from query_bridge.transport.starlette import create_starlette_app

logger = logging.getLogger(__name__)


def build_server(settings: Settings, executor: QueryExecutor) -> BridgeServer:
    registry = CapabilityRegistry()
    register_database_tools(registry, executor, max_rows=settings.max_rows)
    return BridgeServer(
        registry,
        name=settings.server_name,
        version=__version__,
        instructions=settings.instructions,
    )


def build_app(settings: Settings | None = None, executor: QueryExecutor | None = None) -> Starlette:
    """Build the ASGI app.

    When no executor is given a :class:`PostgresExecutor` is created from
    ``settings.database_url``; it is probed at startup and its pool is closed
    at shutdown. A failed probe is logged, not fatal: queries retry the
    connection on demand.
    """
    settings = settings or Settings()  # type: ignore[call-arg]
    owned = executor is None
    if executor is None:
        executor = PostgresExecutor(
            settings.database_url,
            min_size=settings.min_pool_size,
            max_size=settings.max_pool_size,
            statement_timeout=settings.statement_timeout,
        )
    server = build_server(settings, executor)

    @asynccontextmanager
    async def lifespan(server: BridgeServer) -> AsyncIterator[None]:
        if isinstance(executor, PostgresExecutor):
            await executor.probe()
        logger.info("%s %s serving %d tools", server.name, server.version, len(server.registry))
        try:
            yield
        finally:
            if owned and isinstance(executor, PostgresExecutor):
                await executor.close()

    return create_starlette_app(
        server,
        lifespan=lifespan,
        mcp_path=settings.mcp_path,
        delivery_mode=settings.delivery_mode,
        session_id_channel=SessionIdChannel(settings.session_id_channel),
        close_on_disconnect=settings.close_on_disconnect,
        session_idle_timeout=settings.session_idle_timeout,
        cleanup_interval=settings.cleanup_interval,
        sse_ping_interval=settings.sse_ping_interval,
        max_body_bytes=settings.max_body_bytes,
    )
