"""Read-only statement guard for free-text SQL.

A prefix allow-list (``SELECT`` / ``WITH``) plus a deny-list of mutation
keywords. This is a mitigation, not a proof: the executor also runs every
statement inside a read-only transaction.
"""

import re
from typing import Final

ALLOWED_PREFIXES: Final[tuple[str, ...]] = ("SELECT", "WITH")

FORBIDDEN_KEYWORDS: Final[tuple[str, ...]] = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "ALTER",
    "TRUNCATE",
    "CREATE",
    "GRANT",
    "REVOKE",
    "MERGE",
    "COPY",
    "CALL",
    "VACUUM",
)

_LEADING_NOISE = re.compile(r"\A(?:\s+|--[^\n]*(?:\n|\Z)|/\*.*?\*/)*", re.DOTALL)
_FIRST_WORD = re.compile(r"[A-Za-z_]+")
_FORBIDDEN = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)


def strip_leading_noise(statement: str) -> str:
    """Drop leading whitespace and SQL comments."""
    return _LEADING_NOISE.sub("", statement, count=1)


def ensure_read_only(statement: str) -> str:
    """Return ``statement`` stripped of surrounding whitespace if it looks read-only.

    Raises:
        ValueError: the statement is empty, does not start with an allowed
            clause, or mentions a data-mutation keyword
    """
    body = strip_leading_noise(statement)
    if not body.strip():
        raise ValueError("statement is empty")

    match = _FIRST_WORD.match(body)
    first_word = match.group(0).upper() if match else ""
    if first_word not in ALLOWED_PREFIXES:
        raise ValueError(f"only {' / '.join(ALLOWED_PREFIXES)} statements are allowed")

    forbidden = _FORBIDDEN.search(body)
    if forbidden:
        raise ValueError(f"data-modifying keyword {forbidden.group(1).upper()} is not allowed")

    return statement.strip()
