"""RequestContext and the ResponseSink protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from query_bridge.types.json_rpc import JSONRPCMessage, JSONRPCNotification, JSONRPCResponse, RequestId
from query_bridge.types.logging import LoggingLevel, LoggingMessageNotificationParams, is_enabled

if TYPE_CHECKING:
    from query_bridge.session import Session


@runtime_checkable
class ResponseSink(Protocol):
    """Where a running request writes its output.

    One per incoming request. The HTTP router reads the other end and decides
    between a single JSON reply and an event stream.
    """

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        """Send a notification produced while the request is being processed."""
        ...

    async def send_result(self, response: JSONRPCResponse) -> None:
        """Deliver the response; nothing may follow it."""
        ...

    async def close(self) -> None:
        """Release the sink. Safe to call more than once."""
        ...


@dataclass
class RequestContext:
    """What capability handlers receive.

    ``session`` is None only when a capability is invoked outside of a
    session, e.g. from tests.
    """

    session: Session | None
    request_id: RequestId | None
    _sink: ResponseSink

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        notification = JSONRPCNotification(method=method, params=params)
        await self._sink.send_intermediate(notification)

    async def log(self, level: LoggingLevel, data: Any, logger: str | None = None) -> None:
        """Send a ``notifications/message`` if the client asked for this level via ``logging/setLevel``."""
        threshold = self.session.log_level if self.session is not None else None
        if not is_enabled(level, threshold):
            return
        params = LoggingMessageNotificationParams(level=level, logger=logger, data=data)
        await self.send_notification("notifications/message", params.model_dump(exclude_none=True))
