"""The database capabilities exposed to clients.

Each handler performs exactly one call on the :class:`QueryExecutor`.
Schema introspection uses fixed, parameterized statements; only
``run_select_query`` accepts free text, and only after the read-only guard
has passed it during input validation.
"""

from __future__ import annotations

from typing import Annotated, Any, Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

from query_bridge.capabilities.registry import CapabilityRegistry
from query_bridge.capabilities.sql_guard import ensure_read_only
from query_bridge.context import RequestContext
from query_bridge.database import QueryExecutor

LIST_TABLES_SQL: Final[str] = (
    "SELECT table_name FROM information_schema.tables WHERE table_schema = $1 ORDER BY table_name"
)
TABLE_SCHEMA_SQL: Final[str] = (
    "SELECT column_name, data_type FROM information_schema.columns "
    "WHERE table_name = $1 ORDER BY ordinal_position"
)

DEFAULT_MAX_ROWS: Final[int] = 1000


class ListTablesParams(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    schema_name: Annotated[
        str,
        Field(alias="schema", min_length=1, description="Schema whose tables are listed"),
    ] = "public"


class TableSchemaParams(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    table_name: Annotated[
        str,
        Field(alias="tableName", min_length=1, description="Name of the table to describe"),
    ]


class SelectQueryParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sql_query: Annotated[str, Field(description="SELECT or WITH statement to run")]

    @field_validator("sql_query")
    @classmethod
    def _read_only(cls, value: str) -> str:
        return ensure_read_only(value)


def register_database_tools(
    registry: CapabilityRegistry,
    executor: QueryExecutor,
    *,
    max_rows: int = DEFAULT_MAX_ROWS,
) -> CapabilityRegistry:
    """Register ``list_tables``, ``get_table_schema`` and ``run_select_query`` on ``registry``."""

    @registry.capability(
        "list_tables",
        ListTablesParams,
        description="List every table in the database schema (public by default).",
    )
    async def list_tables(ctx: RequestContext, params: ListTablesParams) -> dict[str, Any]:
        result = await executor.fetch(LIST_TABLES_SQL, params.schema_name)
        await ctx.log("debug", f"Found {result.row_count} tables in {params.schema_name}", logger="list_tables")
        return {"rows": result.rows, "rowCount": result.row_count}

    @registry.capability(
        "get_table_schema",
        TableSchemaParams,
        description=(
            "Show the columns and data types of one table. "
            "Inspect the tables involved before writing a JOIN query."
        ),
    )
    async def get_table_schema(ctx: RequestContext, params: TableSchemaParams) -> dict[str, Any]:
        result = await executor.fetch(TABLE_SCHEMA_SQL, params.table_name)
        return {"rows": result.rows, "rowCount": result.row_count}

    @registry.capability(
        "run_select_query",
        SelectQueryParams,
        description=(
            f"Run a read-only SQL query (SELECT or WITH only) and return up to {max_rows} rows. "
            "Use get_table_schema first to find the columns to JOIN on."
        ),
    )
    async def run_select_query(ctx: RequestContext, params: SelectQueryParams) -> dict[str, Any]:
        result = await executor.fetch(params.sql_query)
        truncated = result.row_count > max_rows
        await ctx.log("info", f"Query returned {result.row_count} rows", logger="run_select_query")
        return {
            "rows": result.rows[:max_rows],
            "rowCount": result.row_count,
            "truncated": truncated,
        }

    return registry
