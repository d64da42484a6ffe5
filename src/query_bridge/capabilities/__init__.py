from query_bridge.capabilities.database_tools import register_database_tools
from query_bridge.capabilities.registry import Capability, CapabilityRegistry
from query_bridge.capabilities.sql_guard import ensure_read_only

__all__ = ["Capability", "CapabilityRegistry", "ensure_read_only", "register_database_tools"]
