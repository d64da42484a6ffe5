"""BridgeServer - protocol method table and dispatch.

No I/O, no session bookkeeping, no transport knowledge. Sessions call into it
once they have decided a message may be processed.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from query_bridge.capabilities.registry import CapabilityRegistry, error_call_tool_result, to_call_tool_result
from query_bridge.context import RequestContext
from query_bridge.exceptions import CapabilityExecutionError, CapabilityNotFound, InvalidInput
from query_bridge.types.base import EmptyResult, negotiate_protocol_version
from query_bridge.types.initialize import (
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    ServerCapabilities,
)
from query_bridge.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    error_response,
)
from query_bridge.types.logging import SetLevelRequestParams
from query_bridge.types.tools import CallToolRequestParams, CallToolResult, ListToolsRequestParams, ListToolsResult

logger = logging.getLogger(__name__)

RequestHandler = Callable[[RequestContext, JSONRPCRequest], Awaitable[Any]]
NotificationHandler = Callable[[RequestContext, JSONRPCNotification], Awaitable[None]]


class InvalidParams(Exception):
    """Request params did not match the method's schema."""


class BridgeServer:
    """Handler registry + dispatch for the protocol methods a session accepts.

    ``initialize`` is not in the table: it is protocol machinery owned by the
    session's state machine, which calls :meth:`initialize_result`.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        *,
        name: str = "query-bridge",
        version: str = "0.0.0",
        instructions: str | None = None,
    ) -> None:
        self.registry = registry
        self.name = name
        self.version = version
        self.instructions = instructions
        self._request_handlers: dict[str, RequestHandler] = {
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "logging/setLevel": self._set_level,
        }
        self._notification_handlers: dict[str, NotificationHandler] = {
            "notifications/initialized": self._initialized,
            "notifications/cancelled": self._cancelled,
        }

    def request_handler(self, method: str) -> Callable[[RequestHandler], RequestHandler]:
        """Decorator to register (or override) a request handler for a given method."""

        def decorator(fn: RequestHandler) -> RequestHandler:
            self._request_handlers[method] = fn
            return fn

        return decorator

    def get_capabilities(self) -> ServerCapabilities:
        caps = ServerCapabilities()
        if "tools/list" in self._request_handlers:
            caps.tools = {"listChanged": False}
        if "logging/setLevel" in self._request_handlers:
            caps.logging = {}
        return caps

    def initialize_result(self, params: InitializeRequestParams) -> InitializeResult:
        return InitializeResult(
            protocol_version=negotiate_protocol_version(params.protocol_version),
            capabilities=self.get_capabilities(),
            server_info=Implementation(name=self.name, version=self.version),
            instructions=self.instructions,
        )

    async def dispatch_request(self, ctx: RequestContext, request: JSONRPCRequest) -> JSONRPCResponse:
        handler = self._request_handlers.get(request.method)
        if not handler:
            return error_response(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")
        try:
            result = await handler(ctx, request)
        except InvalidParams as exc:
            return error_response(request.id, INVALID_PARAMS, str(exc))
        except Exception:
            logger.exception("Handler error for %s", request.method)
            return error_response(request.id, INTERNAL_ERROR, "Internal error")

        if isinstance(result, BaseModel):
            result_data = result.model_dump(by_alias=True, exclude_none=True)
        elif isinstance(result, dict):
            result_data = result
        else:
            result_data = {}
        return JSONRPCResultResponse(id=request.id, result=result_data)

    async def dispatch_notification(self, ctx: RequestContext, notification: JSONRPCNotification) -> None:
        handler = self._notification_handlers.get(notification.method)
        if handler is None:
            logger.debug("Ignoring notification %s", notification.method)
            return
        try:
            await handler(ctx, notification)
        except Exception:
            logger.exception("Notification handler error for %s", notification.method)

    async def _ping(self, ctx: RequestContext, request: JSONRPCRequest) -> EmptyResult:
        return EmptyResult()

    async def _list_tools(self, ctx: RequestContext, request: JSONRPCRequest) -> ListToolsResult:
        # Every tool fits in one page; a cursor is accepted and ignored.
        _parse(ListToolsRequestParams, request)
        return ListToolsResult(tools=self.registry.list_tools())

    async def _call_tool(self, ctx: RequestContext, request: JSONRPCRequest) -> CallToolResult:
        params = _parse(CallToolRequestParams, request)
        try:
            value = await self.registry.invoke(params.name, params.arguments, ctx)
        except CapabilityNotFound as exc:
            raise InvalidParams(str(exc)) from exc
        except (InvalidInput, CapabilityExecutionError) as exc:
            return error_call_tool_result(exc)
        return to_call_tool_result(value)

    async def _set_level(self, ctx: RequestContext, request: JSONRPCRequest) -> EmptyResult:
        params = _parse(SetLevelRequestParams, request)
        if ctx.session is not None:
            ctx.session.log_level = params.level
        return EmptyResult()

    async def _initialized(self, ctx: RequestContext, notification: JSONRPCNotification) -> None:
        if ctx.session is not None:
            ctx.session.client_ready = True

    async def _cancelled(self, ctx: RequestContext, notification: JSONRPCNotification) -> None:
        # In-flight calls run to completion; their result is dropped by the transport.
        request_id = (notification.params or {}).get("requestId")
        logger.debug("Client cancelled request %s; letting it finish", request_id)


def _parse(model: type[BaseModel], request: JSONRPCRequest) -> Any:
    try:
        return model.model_validate(request.params or {})
    except ValidationError as exc:
        raise InvalidParams(f"Invalid params for {request.method}: {exc.error_count()} validation error(s)") from exc
