"""Tests for StreamableHTTPHandler routing, push channels and session teardown."""

from collections.abc import AsyncIterator
from typing import Any

import anyio
import pytest

from query_bridge.exceptions import MalformedRequest, PushChannelConflict, SessionExpired
from query_bridge.server import BridgeServer
from query_bridge.transport.httphandler import (
    AcceptedResponse,
    JSONResult,
    SessionIdChannel,
    SSEStream,
    StreamableHTTPHandler,
    accepts_event_stream,
)
from query_bridge.types.json_rpc import (
    JSONRPCErrorResponse,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResultResponse,
)

pytestmark = pytest.mark.anyio


def _init_request(request_id: int = 1, **params: Any) -> JSONRPCRequest:
    return JSONRPCRequest(
        id=request_id,
        method="initialize",
        params={
            "protocolVersion": "2025-11-25",
            "capabilities": {},
            "clientInfo": {"name": "test-client", "version": "1.0"},
            **params,
        },
    )


def _select(request_id: int, sql: str = "SELECT * FROM users") -> JSONRPCRequest:
    return JSONRPCRequest(
        id=request_id,
        method="tools/call",
        params={"name": "run_select_query", "arguments": {"sql_query": sql}},
    )


async def _open_session(handler: StreamableHTTPHandler) -> str:
    result = await handler.handle_post(None, _init_request())
    assert isinstance(result, JSONResult)
    return result.session_id


async def _enable_logging(handler: StreamableHTTPHandler, session_id: str) -> None:
    request = JSONRPCRequest(id=99, method="logging/setLevel", params={"level": "debug"})
    assert isinstance(await handler.handle_post(session_id, request), JSONResult)


@pytest.fixture
async def handler(server: BridgeServer) -> AsyncIterator[StreamableHTTPHandler]:
    handler = StreamableHTTPHandler(server, session_idle_timeout=None)
    async with handler.run():
        yield handler


async def test_run_can_only_be_called_once(server: BridgeServer):
    handler = StreamableHTTPHandler(server)
    async with handler.run():
        pass

    with pytest.raises(RuntimeError, match=r"\.run\(\) can only be called once per instance"):
        async with handler.run():
            pass


async def test_handle_post_without_run_raises_error(server: BridgeServer):
    handler = StreamableHTTPHandler(server)
    with pytest.raises(RuntimeError, match=r"Task group is not initialized. Make sure to use run\(\)."):
        await handler.handle_post(None, _init_request())


async def test_run_freezes_the_registry(server: BridgeServer):
    handler = StreamableHTTPHandler(server)
    async with handler.run():
        assert server.registry.frozen


async def test_initialize_creates_a_session(handler: StreamableHTTPHandler):
    result = await handler.handle_post(None, _init_request(request_id=5))

    assert isinstance(result, JSONResult)
    assert isinstance(result.body, JSONRPCResultResponse)
    assert result.body.id == 5
    assert result.body.result["serverInfo"]["name"] == "test-bridge"
    session = await handler.store.get(result.session_id)
    assert session is not None and session.is_active


async def test_each_initialize_gets_a_fresh_session(handler: StreamableHTTPHandler):
    first = await _open_session(handler)
    second = await _open_session(handler)
    assert first != second


async def test_invalid_initialize_params_create_nothing(handler: StreamableHTTPHandler):
    request = JSONRPCRequest(id=1, method="initialize", params={"capabilities": {}})

    with pytest.raises(MalformedRequest, match="Invalid initialize params"):
        await handler.handle_post(None, request)
    assert await handler.store.list_sessions() == []


async def test_missing_session_id_is_malformed(handler: StreamableHTTPHandler):
    with pytest.raises(MalformedRequest, match="Missing session id"):
        await handler.handle_post(None, JSONRPCRequest(id=1, method="tools/list"))


async def test_unknown_session_id_is_expired(handler: StreamableHTTPHandler):
    with pytest.raises(SessionExpired) as excinfo:
        await handler.handle_post("deadbeef", JSONRPCRequest(id=1, method="tools/list"))
    assert excinfo.value.status_code == 404


async def test_initialize_on_existing_session_is_malformed(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)
    with pytest.raises(MalformedRequest, match="already initialized"):
        await handler.handle_post(session_id, _init_request(request_id=2))


async def test_notification_is_accepted(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)

    result = await handler.handle_post(session_id, JSONRPCNotification(method="notifications/initialized"))
    await anyio.wait_all_tasks_blocked()

    assert isinstance(result, AcceptedResponse)
    session = await handler.store.get(session_id)
    assert session is not None and session.client_ready


async def test_client_response_is_accepted(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)
    response = JSONRPCResultResponse(id="server-1", result={})
    assert isinstance(await handler.handle_post(session_id, response), AcceptedResponse)


async def test_request_without_notifications_is_json(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)

    result = await handler.handle_post(session_id, JSONRPCRequest(id=2, method="tools/list"), accepts_sse=True)

    assert isinstance(result, JSONResult)
    assert result.body.id == 2


async def test_notifications_switch_to_event_stream(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)
    await _enable_logging(handler, session_id)

    result = await handler.handle_post(session_id, _select(3), accepts_sse=True)

    assert isinstance(result, SSEStream)
    assert isinstance(result.first_event.message, JSONRPCNotification)
    assert result.first_event.message.method == "notifications/message"
    async with result.event_stream:
        events = [event async for event in result.event_stream]
    assert len(events) == 1
    assert events[0].is_final
    assert events[0].message.id == 3


async def test_json_delivery_diverts_notifications_to_push_channel(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)
    await _enable_logging(handler, session_id)
    reader = await handler.open_push_channel(session_id)

    result = await handler.handle_post(session_id, _select(3), accepts_sse=False)

    assert isinstance(result, JSONResult)
    assert result.body.id == 3
    assert reader.receive_nowait().method == "notifications/message"


async def test_sse_delivery_mode_ignores_accept(server: BridgeServer):
    handler = StreamableHTTPHandler(server, delivery_mode="sse", session_idle_timeout=None)
    async with handler.run():
        session_id = await _open_session(handler)
        await _enable_logging(handler, session_id)

        result = await handler.handle_post(session_id, _select(3), accepts_sse=False)

        assert isinstance(result, SSEStream)
        result.event_stream.close()


async def test_json_delivery_mode_ignores_accept(server: BridgeServer):
    handler = StreamableHTTPHandler(server, delivery_mode="json", session_idle_timeout=None)
    async with handler.run():
        session_id = await _open_session(handler)
        await _enable_logging(handler, session_id)

        result = await handler.handle_post(session_id, _select(3), accepts_sse=True)

        assert isinstance(result, JSONResult)


async def test_second_push_channel_is_a_conflict(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)
    await handler.open_push_channel(session_id)

    with pytest.raises(PushChannelConflict) as excinfo:
        await handler.open_push_channel(session_id)
    assert excinfo.value.status_code == 409


async def test_push_channel_disconnect_deletes_session(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)
    await handler.open_push_channel(session_id)

    await handler.push_channel_closed(session_id, client_disconnected=True)

    assert await handler.store.get(session_id) is None
    with pytest.raises(SessionExpired):
        await handler.handle_post(session_id, JSONRPCRequest(id=2, method="ping"))


async def test_push_channel_disconnect_can_keep_session(server: BridgeServer):
    handler = StreamableHTTPHandler(server, close_on_disconnect=False, session_idle_timeout=None)
    async with handler.run():
        session_id = await _open_session(handler)
        await handler.open_push_channel(session_id)

        await handler.push_channel_closed(session_id, client_disconnected=True)

        session = await handler.store.get(session_id)
        assert session is not None and session.is_active
        assert not session.has_push_channel
        await handler.open_push_channel(session_id)


async def test_server_side_close_of_push_channel_keeps_session(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)
    await handler.open_push_channel(session_id)

    await handler.push_channel_closed(session_id, client_disconnected=False)

    assert await handler.store.get(session_id) is not None


async def test_delete_closes_the_session(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)
    session = await handler.store.get(session_id)
    reader = await handler.open_push_channel(session_id)

    await handler.handle_delete(session_id)

    assert session is not None and session.is_closed
    with pytest.raises(anyio.EndOfStream):
        await reader.receive()
    with pytest.raises(SessionExpired):
        await handler.handle_delete(session_id)


async def test_delete_without_session_id(handler: StreamableHTTPHandler):
    with pytest.raises(MalformedRequest):
        await handler.handle_delete(None)


async def test_idle_sessions_are_reaped(server: BridgeServer):
    now = [1000.0]
    handler = StreamableHTTPHandler(server, session_idle_timeout=60, clock=lambda: now[0])
    async with handler.run():
        stale = await _open_session(handler)
        now[0] += 30
        fresh = await _open_session(handler)
        listening = await _open_session(handler)
        await handler.open_push_channel(listening)

        now[0] += 45
        reaped = await handler.reap_idle_sessions()

        assert reaped == [stale]
        assert await handler.store.get(stale) is None
        assert await handler.store.get(fresh) is not None
        assert await handler.store.get(listening) is not None


async def test_shutdown_closes_every_session(server: BridgeServer):
    handler = StreamableHTTPHandler(server, session_idle_timeout=None)
    async with handler.run():
        session_id = await _open_session(handler)
        session = await handler.store.get(session_id)

    assert session is not None and session.is_closed
    assert await handler.store.list_sessions() == []


async def test_failed_request_still_answers(handler: StreamableHTTPHandler):
    session_id = await _open_session(handler)

    @handler.server.request_handler("ping")
    async def broken(ctx, request):
        raise RuntimeError("boom")

    result = await handler.handle_post(session_id, JSONRPCRequest(id=7, method="ping"))

    assert isinstance(result, JSONResult)
    assert isinstance(result.body, JSONRPCErrorResponse)
    assert result.body.id == 7


@pytest.mark.parametrize(
    ("source", "headers", "query", "expected"),
    [
        ("header", {"mcp-session-id": "abc"}, {}, "abc"),
        ("header", {}, {"session_id": "abc"}, None),
        ("query", {}, {"session_id": "abc"}, "abc"),
        ("query", {"mcp-session-id": "abc"}, {}, None),
        ("header", {"mcp-session-id": "  "}, {}, None),
    ],
)
def test_session_id_channel(source, headers, query, expected):
    assert SessionIdChannel(source).extract(headers, query) == expected


@pytest.mark.parametrize(
    ("accept", "expected"),
    [
        ("text/event-stream", True),
        ("application/json, text/event-stream;q=0.9", True),
        ("*/*", True),
        ("application/json", False),
        (None, False),
    ],
)
def test_accepts_event_stream(accept, expected):
    assert accepts_event_stream(accept) is expected
