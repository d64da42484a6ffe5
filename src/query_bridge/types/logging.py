"""Types for ``logging/setLevel`` and ``notifications/message``."""

from typing import Any, Final, Literal

from query_bridge.types.base import MCPModel, RequestParams

LoggingLevel = Literal["debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"]

# Syslog severities ordered from least to most severe.
LOGGING_LEVEL_ORDER: Final[dict[str, int]] = {
    "debug": 0,
    "info": 1,
    "notice": 2,
    "warning": 3,
    "error": 4,
    "critical": 5,
    "alert": 6,
    "emergency": 7,
}


class SetLevelRequestParams(RequestParams):
    level: LoggingLevel


class LoggingMessageNotificationParams(MCPModel):
    """Payload of a ``notifications/message`` notification."""

    level: LoggingLevel
    logger: str | None = None
    data: Any


def is_enabled(level: LoggingLevel, threshold: LoggingLevel | None) -> bool:
    """Whether a message at ``level`` passes the client's ``threshold``; None means the client opted out."""
    if threshold is None:
        return False
    return LOGGING_LEVEL_ORDER[level] >= LOGGING_LEVEL_ORDER[threshold]
