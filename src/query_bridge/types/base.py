"""Base models shared by the protocol payloads."""

from typing import Annotated, Any, Final

from pydantic import BaseModel, ConfigDict, Field

LATEST_PROTOCOL_VERSION: Final[str] = "2025-11-25"

SUPPORTED_PROTOCOL_VERSIONS: Final[tuple[str, ...]] = (
    "2024-11-05",
    "2025-03-26",
    "2025-06-18",
    LATEST_PROTOCOL_VERSION,
)


class MCPModel(BaseModel):
    """Base class for all protocol payload types. Allows extra fields for forward compatibility."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Meta(MCPModel):
    """Free-form ``_meta`` object."""


class RequestParams(MCPModel):
    """Base class for request parameters with ``_meta`` support."""

    meta: Annotated[dict[str, Any] | None, Field(alias="_meta")] = None


class Result(MCPModel):
    """Base class for results with ``_meta`` support."""

    meta: Annotated[Meta | None, Field(alias="_meta")] = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EmptyResult(Result):
    """Result for requests that only acknowledge, such as ``ping``."""


def negotiate_protocol_version(requested: str) -> str:
    """Echo the client's version when supported, otherwise offer the latest one."""
    if requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return LATEST_PROTOCOL_VERSION
