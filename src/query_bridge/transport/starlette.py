"""Starlette adapter - thin wrapper around StreamableHTTPHandler.

This is the only module with a Starlette dependency. It validates the HTTP
envelope (method, media types, body size), converts requests into
StreamableHTTPHandler calls and renders the results as JSON, 202 or an event
stream.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import anyio
from pydantic import ValidationError
from sse_starlette import EventSourceResponse
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from query_bridge.exceptions import (
    MalformedRequest,
    MethodNotAllowed,
    NotAcceptable,
    PayloadTooLarge,
    TransportError,
    UnsupportedMediaType,
)
from query_bridge.server import BridgeServer
from query_bridge.transport.httphandler import (
    AcceptedResponse,
    DeliveryMode,
    JSONResult,
    SessionIdChannel,
    SSEStream,
    StreamableHTTPHandler,
    accepts_event_stream,
)
from query_bridge.types.json_rpc import JSONRPCMessage, JSONRPCMessageAdapter, dump_message, error_response

logger = logging.getLogger(__name__)

SESSION_ID_RESPONSE_HEADER = "Mcp-Session-Id"
ALLOWED_METHODS = ("GET", "POST", "DELETE")
DEFAULT_MAX_BODY_BYTES = 5 * 1024 * 1024

Lifespan = Callable[[BridgeServer], AbstractAsyncContextManager[Any]]


@asynccontextmanager
async def _default_lifespan(server: BridgeServer) -> AsyncIterator[None]:
    yield


def _sse_event(message: JSONRPCMessage) -> dict[str, str]:
    return {"event": "message", "data": json.dumps(dump_message(message), ensure_ascii=False)}


def _error_response(exc: TransportError) -> JSONResponse:
    body = dump_message(error_response(None, exc.code, exc.message))
    return JSONResponse(content=body, status_code=exc.status_code, headers=exc.headers)


async def read_request_body(request: Request, *, max_body_bytes: int) -> bytes:
    """Read an HTTP request body, refusing anything over ``max_body_bytes``.

    Content-Length is checked first; the cap is enforced again while
    streaming for chunked bodies or lying clients.
    """
    content_length = request.headers.get("content-length")
    if content_length is not None:
        try:
            too_large = int(content_length) > max_body_bytes
        except ValueError:
            too_large = False
        if too_large:
            raise PayloadTooLarge(f"Request body exceeds {max_body_bytes} bytes")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_body_bytes:
            raise PayloadTooLarge(f"Request body exceeds {max_body_bytes} bytes")
    return bytes(body)


def parse_message(body: bytes) -> JSONRPCMessage:
    """Decode one JSON-RPC message; batches are not accepted."""
    try:
        raw = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedRequest.parse_error(str(exc)) from exc
    if isinstance(raw, list):
        raise MalformedRequest("Batch requests are not supported")
    try:
        return JSONRPCMessageAdapter.validate_python(raw)
    except ValidationError as exc:
        raise MalformedRequest(f"Invalid JSON-RPC message: {exc.error_count()} validation error(s)") from exc


def create_starlette_app(
    server: BridgeServer,
    *,
    lifespan: Lifespan | None = None,
    mcp_path: str = "/mcp",
    delivery_mode: DeliveryMode = "auto",
    session_id_channel: SessionIdChannel | None = None,
    close_on_disconnect: bool = True,
    session_idle_timeout: float | None = 1800.0,
    cleanup_interval: float = 60.0,
    sse_ping_interval: int = 15,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
) -> Starlette:
    """Create a Starlette ASGI app serving ``server`` at ``mcp_path``.

    Usage:
        registry = CapabilityRegistry()
        register_database_tools(registry, executor)
        app = create_starlette_app(BridgeServer(registry))
        uvicorn.run(app, host="0.0.0.0", port=8080)

    ``lifespan`` wraps the router's lifetime; use it to open and close
    resources the capabilities depend on.
    """
    channel = session_id_channel or SessionIdChannel()
    server_lifespan = lifespan or _default_lifespan

    @asynccontextmanager
    async def app_lifespan(app: Starlette) -> AsyncIterator[None]:
        handler = StreamableHTTPHandler(
            server,
            delivery_mode=delivery_mode,
            close_on_disconnect=close_on_disconnect,
            session_idle_timeout=session_idle_timeout,
            cleanup_interval=cleanup_interval,
        )
        async with server_lifespan(server):
            async with handler.run():
                app.state.handler = handler
                yield

    def session_id_of(request: Request) -> str | None:
        return channel.extract(request.headers, request.query_params)

    async def handle_post(request: Request) -> Response:
        handler: StreamableHTTPHandler = request.app.state.handler

        content_type = request.headers.get("content-type", "")
        if content_type.split(";", 1)[0].strip().lower() != "application/json":
            raise UnsupportedMediaType("Content-Type must be application/json")

        body = await read_request_body(request, max_body_bytes=max_body_bytes)
        message = parse_message(body)

        result = await handler.handle_post(
            session_id_of(request),
            message,
            accepts_sse=accepts_event_stream(request.headers.get("accept")),
        )

        match result:
            case AcceptedResponse(session_id=sid):
                return Response(status_code=202, headers={SESSION_ID_RESPONSE_HEADER: sid})

            case JSONResult(body=response_body, session_id=sid):
                return JSONResponse(
                    content=dump_message(response_body),
                    headers={SESSION_ID_RESPONSE_HEADER: sid},
                )

            case SSEStream(first_event=first, event_stream=stream, session_id=sid):

                async def generate() -> AsyncIterator[dict[str, str]]:
                    async with stream:
                        yield _sse_event(first.message)
                        async for event in stream:
                            yield _sse_event(event.message)

                return EventSourceResponse(
                    generate(),
                    headers={SESSION_ID_RESPONSE_HEADER: sid},
                    ping=sse_ping_interval,
                )

        raise AssertionError(f"unexpected post result {result!r}")

    async def handle_get(request: Request) -> Response:
        handler: StreamableHTTPHandler = request.app.state.handler
        if not accepts_event_stream(request.headers.get("accept")):
            raise NotAcceptable("GET requires Accept: text/event-stream")

        session_id = session_id_of(request)
        reader = await handler.open_push_channel(session_id)
        assert session_id is not None

        async def events() -> AsyncIterator[dict[str, str]]:
            ended_by_server = False
            try:
                async with reader:
                    async for message in reader:
                        yield _sse_event(message)
                ended_by_server = True
            finally:
                with anyio.CancelScope(shield=True):
                    await handler.push_channel_closed(session_id, client_disconnected=not ended_by_server)

        return EventSourceResponse(
            events(),
            headers={SESSION_ID_RESPONSE_HEADER: session_id},
            ping=sse_ping_interval,
        )

    async def handle_delete(request: Request) -> Response:
        handler: StreamableHTTPHandler = request.app.state.handler
        await handler.handle_delete(session_id_of(request))
        return Response(status_code=200)

    endpoints = {"GET": handle_get, "POST": handle_post, "DELETE": handle_delete}

    async def mcp_endpoint(request: Request) -> Response:
        endpoint = endpoints.get(request.method)
        try:
            if endpoint is None:
                raise MethodNotAllowed(
                    f"Method {request.method} not allowed",
                    headers={"Allow": ", ".join(ALLOWED_METHODS)},
                )
            return await endpoint(request)
        except TransportError as exc:
            logger.debug("Rejected %s %s: %s", request.method, request.url.path, exc.message)
            return _error_response(exc)

    async def health(request: Request) -> Response:
        return PlainTextResponse("ok")

    return Starlette(
        lifespan=app_lifespan,
        routes=[
            Route("/", health, methods=["GET"]),
            # Unsupported verbs still reach mcp_endpoint for a JSON-RPC 405.
            Route(mcp_path, mcp_endpoint, methods=[*ALLOWED_METHODS, "PUT", "PATCH"]),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=list(ALLOWED_METHODS),
                allow_headers=["*"],
                expose_headers=[SESSION_ID_RESPONSE_HEADER],
            )
        ],
    )
