"""Types for tool listing and invocation."""

from typing import Annotated, Any, Literal

from pydantic import Field

from query_bridge.types.base import MCPModel, RequestParams, Result


class TextContent(MCPModel):
    """Text returned from a tool."""

    type: Literal["text"] = "text"
    text: str


class ToolAnnotations(MCPModel):
    """Behaviour hints; clients may use them to skip confirmation prompts."""

    read_only_hint: Annotated[bool | None, Field(alias="readOnlyHint")] = None
    destructive_hint: Annotated[bool | None, Field(alias="destructiveHint")] = None
    idempotent_hint: Annotated[bool | None, Field(alias="idempotentHint")] = None


class Tool(MCPModel):
    """A capability as advertised by ``tools/list``."""

    name: str
    input_schema: Annotated[dict[str, Any], Field(alias="inputSchema")]
    description: str | None = None
    annotations: ToolAnnotations | None = None


class ListToolsRequestParams(RequestParams):
    cursor: str | None = None


class ListToolsResult(Result):
    """The full tool list; the bridge never paginates."""

    tools: list[Tool]


class CallToolRequestParams(RequestParams):
    name: str
    arguments: dict[str, Any] | None = None


class CallToolResult(Result):
    """Outcome of one capability call. Tool failures set ``isError``, not a JSON-RPC error."""

    content: list[TextContent]
    structured_content: Annotated[dict[str, Any] | None, Field(alias="structuredContent")] = None
    is_error: Annotated[bool, Field(alias="isError")] = False
