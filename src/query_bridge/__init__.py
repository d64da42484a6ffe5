"""HTTP bridge exposing read-only database tools to MCP clients."""

__version__ = "0.1.0"

from query_bridge.app import build_app  # noqa: E402
from query_bridge.config import Settings  # noqa: E402

__all__ = ["Settings", "build_app", "__version__"]
