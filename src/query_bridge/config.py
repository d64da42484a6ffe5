"""Bridge settings.

All settings can be configured via environment variables with the prefix
QUERY_BRIDGE_, e.g. QUERY_BRIDGE_MAX_ROWS=500. The database URL and port also
honour the conventional unprefixed DATABASE_URL and PORT used by hosting
platforms.
"""

from typing import Literal

from pydantic import AliasChoices, Field, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUERY_BRIDGE_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Database settings
    database_url: str = Field(
        validation_alias=AliasChoices("QUERY_BRIDGE_DATABASE_URL", "DATABASE_URL"),
    )
    min_pool_size: PositiveInt = 1
    max_pool_size: PositiveInt = 10
    statement_timeout: PositiveFloat = 30.0
    """Seconds before a single query is abandoned."""
    max_rows: PositiveInt = 1000
    """Rows returned by run_select_query before the result is truncated."""

    # HTTP settings
    host: str = "0.0.0.0"
    port: int = Field(
        default=8080,
        validation_alias=AliasChoices("QUERY_BRIDGE_PORT", "PORT"),
    )
    mcp_path: str = "/mcp"
    max_body_bytes: PositiveInt = 5 * 1024 * 1024

    # Session settings
    delivery_mode: Literal["auto", "json", "sse"] = "auto"
    session_id_channel: Literal["header", "query"] = "header"
    session_idle_timeout: PositiveFloat | None = 1800.0
    """Seconds without traffic before a session is reaped; unset to keep sessions forever."""
    cleanup_interval: PositiveFloat = 60.0
    close_on_disconnect: bool = True
    sse_ping_interval: PositiveInt = 15

    # Server settings
    server_name: str = "query-bridge"
    instructions: str | None = None
    log_level: LogLevel = "INFO"
