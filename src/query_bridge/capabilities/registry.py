from __future__ import annotations as _annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pydantic_core
from pydantic import BaseModel, ValidationError

from query_bridge.exceptions import CapabilityExecutionError, CapabilityNotFound, DuplicateCapability, InvalidInput
from query_bridge.types.tools import CallToolResult, TextContent, Tool, ToolAnnotations

if TYPE_CHECKING:
    from query_bridge.context import RequestContext

logger = logging.getLogger(__name__)

CapabilityHandler = Callable[["RequestContext", Any], Awaitable[Any]]


@dataclass(frozen=True)
class Capability:
    """One named operation a session may invoke."""

    name: str
    input_model: type[BaseModel]
    handler: CapabilityHandler
    description: str | None = None
    read_only: bool = True

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.input_model.model_json_schema(by_alias=True)

    def to_tool(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
            annotations=ToolAnnotations(
                read_only_hint=self.read_only,
                destructive_hint=not self.read_only,
                idempotent_hint=self.read_only,
            ),
        )


class CapabilityRegistry:
    """Declares the operations a session may invoke.

    Registration happens at startup; :meth:`freeze` is called before the first
    session is created so every session sees the same, fixed set.
    """

    def __init__(self, capabilities: list[Capability] | None = None) -> None:
        self._capabilities: dict[str, Capability] = {}
        self._frozen = False
        for capability in capabilities or []:
            self._add(capability)

    def _add(self, capability: Capability) -> None:
        if self._frozen:
            raise RuntimeError("Capability registry is frozen; register capabilities before serving sessions")
        if capability.name in self._capabilities:
            raise DuplicateCapability(capability.name)
        self._capabilities[capability.name] = capability

    def register(
        self,
        name: str,
        input_model: type[BaseModel],
        handler: CapabilityHandler,
        *,
        description: str | None = None,
        read_only: bool = True,
    ) -> Capability:
        capability = Capability(
            name=name,
            input_model=input_model,
            handler=handler,
            description=description,
            read_only=read_only,
        )
        self._add(capability)
        return capability

    def capability(
        self,
        name: str,
        input_model: type[BaseModel],
        *,
        description: str | None = None,
        read_only: bool = True,
    ) -> Callable[[CapabilityHandler], CapabilityHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: CapabilityHandler) -> CapabilityHandler:
            self.register(name, input_model, fn, description=description or fn.__doc__, read_only=read_only)
            return fn

        return decorator

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Capability | None:
        return self._capabilities.get(name)

    def list_tools(self) -> list[Tool]:
        return [capability.to_tool() for capability in self._capabilities.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    def validate(self, name: str, raw_input: dict[str, Any] | None) -> tuple[Capability, BaseModel]:
        capability = self._capabilities.get(name)
        if capability is None:
            raise CapabilityNotFound(name)
        try:
            params = capability.input_model.model_validate(raw_input or {})
        except ValidationError as exc:
            raise InvalidInput(name, _violations(exc)) from exc
        return capability, params

    async def invoke(self, name: str, raw_input: dict[str, Any] | None, ctx: RequestContext) -> Any:
        """Validate ``raw_input`` and run the capability.

        Raises:
            CapabilityNotFound: no capability is registered under ``name``
            InvalidInput: the input failed validation; the handler was not called
            CapabilityExecutionError: the handler raised
        """
        capability, params = self.validate(name, raw_input)
        logger.debug("Invoking capability %s", name)
        try:
            return await capability.handler(ctx, params)
        except Exception as exc:
            logger.warning("Capability %s failed: %s", name, exc)
            raise CapabilityExecutionError(name, str(exc) or type(exc).__name__) from exc


def _violations(exc: ValidationError) -> list[dict[str, str]]:
    fields = []
    for error in exc.errors(include_url=False):
        location = ".".join(str(part) for part in error["loc"]) or "<input>"
        fields.append({"field": location, "message": error["msg"]})
    return fields


def to_call_tool_result(value: Any) -> CallToolResult:
    """Render a capability's return value the way clients expect it.

    Mappings become ``structuredContent``; the text block carries the ``rows``
    entry when there is one, otherwise the whole value, as indented JSON.
    """
    if isinstance(value, CallToolResult):
        return value
    jsonable = pydantic_core.to_jsonable_python(value, fallback=str)
    if isinstance(jsonable, dict):
        text_source = jsonable.get("rows", jsonable)
        structured = jsonable
    else:
        text_source = jsonable
        structured = {"result": jsonable}
    text = json.dumps(text_source, indent=2, ensure_ascii=False)
    return CallToolResult(content=[TextContent(text=text)], structured_content=structured)


def error_call_tool_result(error: InvalidInput | CapabilityExecutionError) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(text=f"Error: {error}")],
        structured_content={"error": error.to_structured()},
        is_error=True,
    )
