"""StreamableHTTPHandler - framework-agnostic transport router.

Resolves sessions, creates sinks, spawns handler tasks, and decides between a
single JSON reply and an event stream. It also owns session teardown:
explicit close, push-channel disconnect, idle expiry and shutdown all go
through :meth:`StreamableHTTPHandler.close_session`, which removes the store
entry exactly once. No Starlette dependency; the adapter in
``query_bridge.transport.starlette`` converts HTTP requests to these calls.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass
from typing import Final, Literal

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream
from pydantic import ValidationError

from query_bridge.exceptions import MalformedRequest, SessionExpired
from query_bridge.server import BridgeServer
from query_bridge.session import Session
from query_bridge.session_store import InMemorySessionStore, SessionStore
from query_bridge.transport.sink import ChannelSink, PushChannelSink, SinkEvent
from query_bridge.types.initialize import InitializeRequestParams
from query_bridge.types.json_rpc import (
    INTERNAL_ERROR,
    JSONRPCMessage,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    error_response,
    is_initialize_request,
)

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER: Final[str] = "mcp-session-id"
SESSION_ID_QUERY_PARAM: Final[str] = "session_id"

DeliveryMode = Literal["auto", "json", "sse"]
SessionIdSource = Literal["header", "query"]


@dataclass(frozen=True)
class SessionIdChannel:
    """Where the session id travels. One instance serves POST, GET and DELETE alike."""

    source: SessionIdSource = "header"

    def extract(self, headers: Mapping[str, str], query_params: Mapping[str, str]) -> str | None:
        if self.source == "header":
            value = headers.get(MCP_SESSION_ID_HEADER)
        else:
            value = query_params.get(SESSION_ID_QUERY_PARAM)
        if value is None:
            return None
        return value.strip() or None


def accepts_event_stream(accept: str | None) -> bool:
    """Whether an Accept header admits ``text/event-stream`` (wildcards included)."""
    if not accept:
        return False
    for part in accept.split(","):
        media_type = part.split(";", 1)[0].strip().lower()
        if media_type in ("text/event-stream", "text/*", "*/*"):
            return True
    return False


# --- Post result types ---


@dataclass
class AcceptedResponse:
    """Notification or client response. Ack with 202."""

    session_id: str


@dataclass
class JSONResult:
    """Handler completed without intermediate messages. Return as JSON."""

    body: JSONRPCResponse
    session_id: str


@dataclass
class SSEStream:
    """Handler is streaming. First event already available."""

    first_event: SinkEvent
    event_stream: MemoryObjectReceiveStream[SinkEvent]
    session_id: str


PostResult = AcceptedResponse | JSONResult | SSEStream


class StreamableHTTPHandler:
    """Transport router over a :class:`SessionStore`.

    Only one :meth:`run` context is allowed per instance; every ``handle_*``
    call must happen inside it.

    Args:
        server: protocol dispatch shared by every session
        store: session store; in-memory by default
        delivery_mode: ``json`` always answers a request with one JSON body,
            ``sse`` streams when the handler emits intermediate messages,
            ``auto`` picks ``sse`` when the client accepts an event stream
        close_on_disconnect: delete the session when its push channel's
            client goes away
        session_idle_timeout: seconds without traffic before a session is
            reaped; None disables reaping
        cleanup_interval: seconds between reaper passes
    """

    def __init__(
        self,
        server: BridgeServer,
        store: SessionStore | None = None,
        *,
        delivery_mode: DeliveryMode = "auto",
        close_on_disconnect: bool = True,
        session_idle_timeout: float | None = 1800.0,
        cleanup_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.server = server
        self.store = store if store is not None else InMemorySessionStore()
        self.delivery_mode = delivery_mode
        self.close_on_disconnect = close_on_disconnect
        self.session_idle_timeout = session_idle_timeout
        self.cleanup_interval = cleanup_interval
        self._clock = clock

        self._task_group: TaskGroup | None = None
        self._run_lock = anyio.Lock()
        self._has_started = False

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[StreamableHTTPHandler]:
        """Own the task group that runs handlers and the idle reaper.

        Leaving the context closes every live session.
        """
        async with self._run_lock:
            if self._has_started:
                raise RuntimeError(
                    "StreamableHTTPHandler .run() can only be called once per instance. "
                    "Create a new instance if you need to run again."
                )
            self._has_started = True

        self.server.registry.freeze()
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            if self.session_idle_timeout is not None:
                tg.start_soon(self._reaper_loop)
            logger.info("Session router started")
            try:
                yield self
            finally:
                logger.info("Session router shutting down")
                with anyio.CancelScope(shield=True):
                    for session in await self.store.clear():
                        session.close("server shutdown")
                tg.cancel_scope.cancel()
                self._task_group = None

    def _require_task_group(self) -> TaskGroup:
        if self._task_group is None:
            raise RuntimeError("Task group is not initialized. Make sure to use run().")
        return self._task_group

    async def resolve(self, session_id: str | None) -> Session:
        """Look up a live session or raise the condition the client has to act on."""
        if session_id is None:
            raise MalformedRequest("Missing session id; send an initialize request first")
        session = await self.store.get(session_id)
        if session is None or not session.is_active:
            logger.debug("Rejecting unknown session id %s", session_id)
            raise SessionExpired(session_id)
        return session

    async def handle_post(
        self,
        session_id: str | None,
        message: JSONRPCMessage,
        *,
        accepts_sse: bool = False,
    ) -> PostResult:
        """Classify one POSTed message and run it.

        Raises:
            MalformedRequest: no session id on a non-initialize message, an
                initialize on an existing session, or bad initialize params
            SessionExpired: the session id is unknown to this process
        """
        tg = self._require_task_group()

        if session_id is None:
            if not is_initialize_request(message):
                raise MalformedRequest("Missing session id; send an initialize request first")
            assert isinstance(message, JSONRPCRequest)
            return await self._handshake(message)

        session = await self.resolve(session_id)
        if is_initialize_request(message):
            raise MalformedRequest(f"Session {session_id} is already initialized")

        if not isinstance(message, JSONRPCRequest):
            tg.start_soon(self._run_notification, session, message)
            return AcceptedResponse(session_id=session.id)

        send, recv = anyio.create_memory_object_stream[SinkEvent](16)
        streaming = self.delivery_mode == "sse" or (self.delivery_mode == "auto" and accepts_sse)
        sink = ChannelSink(send, divert=None if streaming else session.publish)
        tg.start_soon(self._run_handler, session, sink, message)

        # The handler keeps running if the client leaves while we wait.
        try:
            first = await recv.receive()
        except anyio.EndOfStream:
            recv.close()
            if session.is_closed:
                raise SessionExpired(session.id) from None
            return JSONResult(
                body=error_response(message.id, INTERNAL_ERROR, "Internal error"),
                session_id=session.id,
            )
        except BaseException:
            recv.close()
            raise

        if first.is_final:
            recv.close()
            return JSONResult(body=first.message, session_id=session.id)  # type: ignore[arg-type]

        return SSEStream(first_event=first, event_stream=recv, session_id=session.id)

    async def _handshake(self, request: JSONRPCRequest) -> JSONResult:
        try:
            params = InitializeRequestParams.model_validate(request.params or {})
        except ValidationError as exc:
            raise MalformedRequest(f"Invalid initialize params: {exc.error_count()} validation error(s)") from exc

        results = {}

        def build(new_id: str) -> Session:
            session = Session(new_id, self.server, clock=self._clock)
            results[new_id] = session.initialize(params)
            return session

        session = await self.store.create(build)
        result = results[session.id]
        return JSONResult(
            body=JSONRPCResultResponse(id=request.id, result=result.to_wire()),
            session_id=session.id,
        )

    async def _run_handler(self, session: Session, sink: ChannelSink, message: JSONRPCRequest) -> None:
        try:
            await session.handle_message(sink, message)
        except SessionExpired:
            logger.debug("Session %s closed before request %s ran", session.id, message.id)
        except Exception:
            logger.exception("Handler error for session %s", session.id)
            await sink.send_result(error_response(message.id, INTERNAL_ERROR, "Internal error"))
        finally:
            await sink.close()

    async def _run_notification(self, session: Session, message: JSONRPCMessage) -> None:
        try:
            await session.handle_message(PushChannelSink(session.publish), message)
        except SessionExpired:
            logger.debug("Dropping message for closed session %s", session.id)
        except Exception:
            logger.exception("Notification handler error for session %s", session.id)

    async def open_push_channel(self, session_id: str | None) -> MemoryObjectReceiveStream[JSONRPCMessage]:
        """Attach the long-lived event stream for a session.

        Raises:
            PushChannelConflict: the session already has an open stream
        """
        session = await self.resolve(session_id)
        return session.open_push_channel()

    async def push_channel_closed(self, session_id: str, *, client_disconnected: bool) -> None:
        session = await self.store.get(session_id)
        if session is None:
            return
        session.detach_push_channel()
        if client_disconnected and self.close_on_disconnect:
            await self.close_session(session_id, reason="client disconnected")

    async def handle_delete(self, session_id: str | None) -> None:
        """Explicit close requested by the client."""
        if session_id is None:
            raise MalformedRequest("Missing session id")
        if not await self.close_session(session_id, reason="client requested close"):
            raise SessionExpired(session_id)

    async def close_session(self, session_id: str, *, reason: str) -> bool:
        """Remove the session from the store and close it. False if it was already gone."""
        session = await self.store.delete(session_id)
        if session is None:
            return False
        session.close(reason)
        return True

    async def reap_idle_sessions(self, now: float | None = None) -> list[str]:
        if self.session_idle_timeout is None:
            return []
        now = now if now is not None else self._clock()
        reaped = []
        for session in await self.store.list_sessions():
            if session.idle_for(now) > self.session_idle_timeout:
                if await self.close_session(session.id, reason="idle timeout"):
                    reaped.append(session.id)
        if reaped:
            logger.info("Reaped %d idle session(s)", len(reaped))
        return reaped

    async def _reaper_loop(self) -> None:
        while True:
            await anyio.sleep(self.cleanup_interval)
            try:
                await self.reap_idle_sessions()
            except Exception:
                logger.exception("Idle session cleanup failed")
