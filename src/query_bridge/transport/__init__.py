from query_bridge.transport.httphandler import (
    AcceptedResponse,
    JSONResult,
    SessionIdChannel,
    SSEStream,
    StreamableHTTPHandler,
)
from query_bridge.transport.sink import ChannelSink, PushChannelSink, SinkEvent
from query_bridge.transport.starlette import create_starlette_app

__all__ = [
    "AcceptedResponse",
    "ChannelSink",
    "JSONResult",
    "PushChannelSink",
    "SSEStream",
    "SessionIdChannel",
    "SinkEvent",
    "StreamableHTTPHandler",
    "create_starlette_app",
]
