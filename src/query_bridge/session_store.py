"""Session Store - the process-wide map from session id to Session.

This is the only structure mutated by several connection handlers at once.
Every operation runs under one lock so create/get/delete are atomic with
respect to each other.
"""

from __future__ import annotations

import abc
import logging
import secrets
from collections.abc import Callable
from typing import TYPE_CHECKING

import anyio

if TYPE_CHECKING:
    from query_bridge.session import Session

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str], "Session"]


def generate_session_id() -> str:
    """128 random bits rendered as 32 hex characters (visible ASCII only)."""
    return secrets.token_hex(16)


class SessionStore(abc.ABC):
    """Minimal interface the router depends on."""

    @abc.abstractmethod
    async def create(self, factory: SessionFactory) -> Session:
        """Issue a fresh id, build the session with ``factory(id)`` and store it."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get(self, session_id: str) -> Session | None:
        """Return the live session for ``session_id`` or None."""
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, session_id: str) -> Session | None:
        """Remove and return the session; unknown ids are a no-op returning None."""
        raise NotImplementedError

    @abc.abstractmethod
    async def list_sessions(self) -> list[Session]:
        raise NotImplementedError

    @abc.abstractmethod
    async def clear(self) -> list[Session]:
        """Remove every session, returning what was removed."""
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    def __init__(self, id_generator: Callable[[], str] = generate_session_id) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = anyio.Lock()
        self._id_generator = id_generator

    async def create(self, factory: SessionFactory) -> Session:
        async with self._lock:
            session_id = self._id_generator()
            while session_id in self._sessions:
                logger.warning("Session id collision, generating a new one")
                session_id = self._id_generator()
            session = factory(session_id)
            self._sessions[session_id] = session
        logger.debug("Stored session %s (%d live)", session_id, len(self._sessions))
        return session

    async def get(self, session_id: str) -> Session | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def delete(self, session_id: str) -> Session | None:
        async with self._lock:
            return self._sessions.pop(session_id, None)

    async def list_sessions(self) -> list[Session]:
        async with self._lock:
            return list(self._sessions.values())

    async def clear(self) -> list[Session]:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        return sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
