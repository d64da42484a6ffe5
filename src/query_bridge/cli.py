"""Command line entry point: ``query-bridge``."""

import logging

import click
import uvicorn
from pydantic import ValidationError

from query_bridge.app import build_app
from query_bridge.config import Settings
from query_bridge.utilities.logging import configure_logging

logger = logging.getLogger(__name__)


@click.command()
@click.option("--host", default=None, help="Interface to bind (default: QUERY_BRIDGE_HOST or 0.0.0.0)")
@click.option("--port", type=int, default=None, help="Port to listen on (default: PORT or 8080)")
@click.option("--database-url", default=None, help="PostgreSQL connection string (default: DATABASE_URL)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging level",
)
def main(host: str | None, port: int | None, database_url: str | None, log_level: str | None) -> int:
    overrides = {
        key: value
        for key, value in {
            "host": host,
            "port": port,
            "database_url": database_url,
            "log_level": log_level.upper() if log_level else None,
        }.items()
        if value is not None
    }
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        raise click.ClickException(f"Invalid configuration:\n{exc}") from exc

    configure_logging(settings.log_level)
    app = build_app(settings)
    logger.info("Listening on %s:%d%s", settings.host, settings.port, settings.mcp_path)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    return 0
