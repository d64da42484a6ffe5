"""ResponseSink implementations used by the HTTP router."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import anyio
from anyio.streams.memory import MemoryObjectSendStream

from query_bridge.types.json_rpc import JSONRPCMessage, JSONRPCResponse

logger = logging.getLogger(__name__)


@dataclass
class SinkEvent:
    """One outgoing message plus whether it ends the exchange."""

    message: JSONRPCMessage
    is_final: bool = False


class ChannelSink:
    """Per-request sink backed by an anyio memory channel.

    The router reads the other end to decide between a JSON reply and an
    event stream. When ``divert`` is given, intermediate messages go there
    instead (single-shot delivery: the reply must stay one JSON body).

    If the HTTP client has gone away the channel is closed from the reading
    side; whatever the handler still produces is dropped.
    """

    def __init__(
        self,
        send_stream: MemoryObjectSendStream[SinkEvent],
        *,
        divert: Callable[[JSONRPCMessage], object] | None = None,
    ) -> None:
        self._send = send_stream
        self._divert = divert
        self._closed = False

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        if self._closed:
            return
        if self._divert is not None:
            self._divert(message)
            return
        await self._deliver(SinkEvent(message=message))

    async def send_result(self, response: JSONRPCResponse) -> None:
        if self._closed:
            return
        await self._deliver(SinkEvent(message=response, is_final=True))
        await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with anyio.CancelScope(shield=True):
            await self._send.aclose()

    async def _deliver(self, event: SinkEvent) -> None:
        try:
            await self._send.send(event)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("Listener went away; discarding %s", type(event.message).__name__)
            await self.close()


class PushChannelSink:
    """Forwards intermediate messages of a notification to the session's push channel."""

    def __init__(self, publish: Callable[[JSONRPCMessage], object]) -> None:
        self._publish = publish

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        self._publish(message)

    async def send_result(self, response: JSONRPCResponse) -> None:
        pass

    async def close(self) -> None:
        pass
