"""Error taxonomy for the bridge.

Transport errors are raised while classifying an HTTP request and are turned
into 4xx responses by the router. Capability errors are raised by the registry
and become error results inside a successful ``tools/call`` exchange.
"""

from http import HTTPStatus
from typing import Any

from query_bridge.types.json_rpc import INVALID_REQUEST, PARSE_ERROR, ErrorData


class BridgeError(Exception):
    """Base error for the bridge."""


class TransportError(BridgeError):
    """A request that the router refuses before it reaches a session."""

    status_code: HTTPStatus = HTTPStatus.BAD_REQUEST
    code: int = INVALID_REQUEST

    def __init__(self, message: str, headers: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.headers = headers or {}

    def to_error_data(self) -> ErrorData:
        return ErrorData(code=self.code, message=self.message)


class MalformedRequest(TransportError):
    """Structurally invalid input, or a non-initialize message without a session id."""

    def __init__(self, message: str, code: int = INVALID_REQUEST):
        super().__init__(message)
        self.code = code

    @classmethod
    def parse_error(cls, detail: str) -> "MalformedRequest":
        return cls(f"Parse error: {detail}", code=PARSE_ERROR)


class SessionExpired(TransportError):
    """The session id is unknown to this process; the client must initialize again."""

    status_code = HTTPStatus.NOT_FOUND

    def __init__(self, session_id: str):
        super().__init__(f"Session not found or expired: {session_id}. Send a new initialize request.")
        self.session_id = session_id


class PushChannelConflict(TransportError):
    """A second push channel was requested for a session that already has one open."""

    status_code = HTTPStatus.CONFLICT

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} already has an open event stream")
        self.session_id = session_id


class PayloadTooLarge(TransportError):
    status_code = HTTPStatus.REQUEST_ENTITY_TOO_LARGE


class UnsupportedMediaType(TransportError):
    status_code = HTTPStatus.UNSUPPORTED_MEDIA_TYPE


class NotAcceptable(TransportError):
    status_code = HTTPStatus.NOT_ACCEPTABLE


class MethodNotAllowed(TransportError):
    status_code = HTTPStatus.METHOD_NOT_ALLOWED


class CapabilityError(BridgeError):
    """Base error for capability lookup, validation and execution."""

    def to_structured(self) -> dict[str, Any]:
        return {"type": type(self).__name__, "message": str(self)}


class CapabilityNotFound(CapabilityError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidInput(CapabilityError):
    """Tool arguments failed validation.

    Attributes:
        fields: one ``{"field": ..., "message": ...}`` entry per violation
    """

    def __init__(self, capability: str, fields: list[dict[str, str]]):
        summary = "; ".join(f"{f['field']}: {f['message']}" for f in fields)
        super().__init__(f"Invalid input for {capability}: {summary}")
        self.capability = capability
        self.fields = fields

    def to_structured(self) -> dict[str, Any]:
        structured = super().to_structured()
        structured["fields"] = self.fields
        return structured


class CapabilityExecutionError(CapabilityError):
    """The capability handler failed, usually because the database call did."""

    def __init__(self, capability: str, message: str):
        super().__init__(message)
        self.capability = capability


class DuplicateCapability(BridgeError):
    """Two capabilities were registered under the same name. Fatal at startup."""

    def __init__(self, name: str):
        super().__init__(f"Capability already registered: {name}")
        self.name = name
