"""JSON-RPC 2.0 envelopes carried over the bridge's HTTP transport."""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

JSONRPC_VERSION: Final[str] = "2.0"

PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

RequestId = Annotated[int, Field(strict=True)] | str


class JSONRPCBase(BaseModel):
    """Fields shared by every envelope; unknown members are kept."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """Carries an id; the peer owes exactly one response."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """Fire-and-forget message without an id."""

    method: str
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """The ``error`` member of an error envelope."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResultResponse(JSONRPCBase):
    """Successful reply; ``result`` is whatever the handler returned."""

    id: RequestId
    result: dict[str, Any]


class JSONRPCErrorResponse(JSONRPCBase):
    """Failed reply. ``id`` is null when the request could not be read."""

    id: RequestId | None = None
    error: ErrorData


JSONRPCResponse = JSONRPCResultResponse | JSONRPCErrorResponse
JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse

# Requests are tried before notifications so an "id" is never swallowed as an extra field.
JSONRPCMessageAdapter: TypeAdapter[JSONRPCMessage] = TypeAdapter(
    Annotated[JSONRPCMessage, Field(union_mode="left_to_right")]
)


def error_response(
    request_id: RequestId | None,
    code: int,
    message: str,
    data: Any | None = None,
) -> JSONRPCErrorResponse:
    return JSONRPCErrorResponse(id=request_id, error=ErrorData(code=code, message=message, data=data))


def is_initialize_request(message: JSONRPCMessage) -> bool:
    """True when ``message`` opens a new session."""
    return isinstance(message, JSONRPCRequest) and message.method == "initialize"


def dump_message(message: JSONRPCMessage) -> dict[str, Any]:
    data = message.model_dump(by_alias=True, exclude_none=True)
    if isinstance(message, JSONRPCErrorResponse):
        # Errors raised before the request id was known still carry "id": null.
        data["id"] = message.id
    return data
