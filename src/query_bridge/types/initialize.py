"""Types for the initialize handshake."""

from typing import Annotated, Any

from pydantic import Field

from query_bridge.types.base import MCPModel, RequestParams, Result


class Implementation(MCPModel):
    """Describes the name and version of a client or server."""

    name: str
    version: str
    title: str | None = None


class ClientCapabilities(MCPModel):
    """Capabilities that a client may support."""

    experimental: dict[str, Any] | None = None
    roots: dict[str, Any] | None = None
    sampling: dict[str, Any] | None = None
    elicitation: dict[str, Any] | None = None


class ServerCapabilities(MCPModel):
    """Capabilities advertised by the bridge."""

    logging: dict[str, Any] | None = None
    tools: dict[str, Any] | None = None


class InitializeRequestParams(RequestParams):
    """Parameters for the initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ClientCapabilities
    client_info: Annotated[Implementation, Field(alias="clientInfo")]


class InitializeResult(Result):
    """Server's response to an initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ServerCapabilities
    server_info: Annotated[Implementation, Field(alias="serverInfo")]
    instructions: str | None = None
