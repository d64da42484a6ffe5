"""
Session Module

One Session is one conversational context with one client. It owns the
handshake state machine, serializes the messages of its client so that
capability calls never overlap, and holds at most one push channel (the
long-lived event stream opened with GET).

    AwaitingHandshake --initialize--> Active --close()--> Closed

Sessions are created by the router through the session store and are never
shared between clients.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from query_bridge.context import RequestContext, ResponseSink
from query_bridge.exceptions import MalformedRequest, PushChannelConflict, SessionExpired
from query_bridge.types.initialize import (
    ClientCapabilities,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
)
from query_bridge.types.json_rpc import JSONRPCMessage, JSONRPCNotification, JSONRPCRequest
from query_bridge.types.logging import LoggingLevel

if TYPE_CHECKING:
    from query_bridge.capabilities.registry import CapabilityRegistry
    from query_bridge.server import BridgeServer

logger = logging.getLogger(__name__)

PUSH_CHANNEL_BUFFER = 64


class SessionState(Enum):
    AwaitingHandshake = 1
    Active = 2
    Closed = 3


_VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.AwaitingHandshake: {SessionState.Active, SessionState.Closed},
    SessionState.Active: {SessionState.Closed},
    SessionState.Closed: set(),
}


class Session:
    def __init__(
        self,
        session_id: str,
        server: BridgeServer,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.id = session_id
        self.server = server
        self._clock = clock
        self.created_at = clock()
        self.last_activity = self.created_at
        self._state = SessionState.AwaitingHandshake

        self.client_info: Implementation | None = None
        self.client_capabilities: ClientCapabilities | None = None
        self.protocol_version: str | None = None
        self.client_ready = False
        self.log_level: LoggingLevel | None = None

        # FIFO: a second request for this session waits for the first one.
        self._lock = anyio.Lock()
        self.in_flight = 0

        self._push_writer: MemoryObjectSendStream[JSONRPCMessage] | None = None

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, state={self._state.name})"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def capabilities(self) -> CapabilityRegistry:
        return self.server.registry

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.Active

    @property
    def is_closed(self) -> bool:
        return self._state is SessionState.Closed

    def _transition_state(self, new_state: SessionState) -> None:
        if new_state not in _VALID_TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid session state transition: {self._state.name} -> {new_state.name}")
        logger.debug("Session %s: %s -> %s", self.id, self._state.name, new_state.name)
        self._state = new_state

    def touch(self) -> None:
        self.last_activity = self._clock()

    def idle_for(self, now: float | None = None) -> float:
        """Seconds since the last message; zero while a request is running or a push channel is open."""
        if self.in_flight or self.has_push_channel:
            return 0.0
        return (now if now is not None else self._clock()) - self.last_activity

    def initialize(self, params: InitializeRequestParams) -> InitializeResult:
        """Complete the handshake: AwaitingHandshake -> Active.

        Synchronous so the router can run it inside the store's session
        factory: an entry only ever appears in the store already Active.
        """
        self._transition_state(SessionState.Active)
        self.client_info = params.client_info
        self.client_capabilities = params.capabilities
        result = self.server.initialize_result(params)
        self.protocol_version = result.protocol_version
        self.touch()
        logger.info(
            "Session %s initialized by %s %s (protocol %s)",
            self.id,
            params.client_info.name,
            params.client_info.version,
            self.protocol_version,
        )
        return result

    async def handle_message(self, sink: ResponseSink, message: JSONRPCMessage) -> None:
        """Process one post-handshake message, in arrival order.

        Requests are answered through ``sink``. Notifications and client
        responses produce nothing.
        """
        if isinstance(message, JSONRPCRequest) and message.method == "initialize":
            raise MalformedRequest(f"Session {self.id} is already initialized")

        self.in_flight += 1
        try:
            async with self._lock:
                if not self.is_active:
                    raise SessionExpired(self.id)
                self.touch()
                if isinstance(message, JSONRPCRequest):
                    ctx = RequestContext(session=self, request_id=message.id, _sink=sink)
                    response = await self.server.dispatch_request(ctx, message)
                    await sink.send_result(response)
                elif isinstance(message, JSONRPCNotification):
                    ctx = RequestContext(session=self, request_id=None, _sink=sink)
                    await self.server.dispatch_notification(ctx, message)
                else:
                    # No server->client requests are ever issued, so responses have nowhere to go.
                    logger.debug("Session %s ignoring client response %s", self.id, message.id)
        finally:
            self.in_flight -= 1
            self.touch()

    def open_push_channel(self) -> MemoryObjectReceiveStream[JSONRPCMessage]:
        """Attach the long-lived event stream. Only one may be open at a time."""
        if not self.is_active:
            raise SessionExpired(self.id)
        if self._push_writer is not None:
            raise PushChannelConflict(self.id)
        writer, reader = anyio.create_memory_object_stream[JSONRPCMessage](PUSH_CHANNEL_BUFFER)
        self._push_writer = writer
        logger.info("Session %s opened its event stream", self.id)
        return reader

    def detach_push_channel(self) -> None:
        writer, self._push_writer = self._push_writer, None
        if writer is not None:
            writer.close()
            logger.info("Session %s event stream closed", self.id)

    @property
    def has_push_channel(self) -> bool:
        return self._push_writer is not None

    def publish(self, message: JSONRPCMessage) -> bool:
        """Queue a server-initiated message on the push channel.

        Best effort: returns False when there is no channel, the client went
        away, or the client is too slow to keep up.
        """
        writer = self._push_writer
        if writer is None:
            return False
        try:
            writer.send_nowait(message)
        except anyio.WouldBlock:
            logger.warning("Session %s event stream is full; dropping message", self.id)
            return False
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            self.detach_push_channel()
            return False
        return True

    def close(self, reason: str = "closed") -> bool:
        """Move to Closed and end the push channel. Returns False if already closed."""
        if self.is_closed:
            return False
        self._transition_state(SessionState.Closed)
        self.detach_push_channel()
        logger.info("Session %s closed (%s)", self.id, reason)
        return True
