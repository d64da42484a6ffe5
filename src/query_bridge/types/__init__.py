"""Wire types for the bridge protocol."""

from query_bridge.types.base import (
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    EmptyResult,
    MCPModel,
    Result,
    negotiate_protocol_version,
)
from query_bridge.types.initialize import (
    ClientCapabilities,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    ServerCapabilities,
)
from query_bridge.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCMessageAdapter,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    RequestId,
)
from query_bridge.types.logging import LoggingLevel, LoggingMessageNotificationParams, SetLevelRequestParams
from query_bridge.types.tools import (
    CallToolRequestParams,
    CallToolResult,
    ListToolsResult,
    TextContent,
    Tool,
    ToolAnnotations,
)

__all__ = [
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "LATEST_PROTOCOL_VERSION",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "CallToolRequestParams",
    "CallToolResult",
    "ClientCapabilities",
    "EmptyResult",
    "ErrorData",
    "Implementation",
    "InitializeRequestParams",
    "InitializeResult",
    "JSONRPCErrorResponse",
    "JSONRPCMessage",
    "JSONRPCMessageAdapter",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "JSONRPCResultResponse",
    "ListToolsResult",
    "LoggingLevel",
    "LoggingMessageNotificationParams",
    "MCPModel",
    "RequestId",
    "Result",
    "ServerCapabilities",
    "SetLevelRequestParams",
    "TextContent",
    "Tool",
    "ToolAnnotations",
    "negotiate_protocol_version",
]
