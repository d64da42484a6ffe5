"""Logging utilities for the bridge."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
) -> None:
    """Configure logging for the bridge process.

    Args:
        level: the log level to use
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    # asyncpg logs every pool connection at DEBUG; keep it quieter than ours.
    logging.getLogger("asyncpg").setLevel(max(logging.getLevelName(level), logging.INFO))
