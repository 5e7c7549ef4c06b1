"""Session registry: tracks live gateway sessions and which servers they follow."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Iterable
from typing import Any, Protocol

log = logging.getLogger(__name__)


class SessionState(enum.Enum):
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


class Session(Protocol):
    session_id: str
    user_id: int
    token: str
    state: SessionState
    server_ids: set[int]

    def enqueue(self, envelope: dict[str, Any]) -> bool: ...

    async def close(self, code: int, reason: str = "") -> None: ...


class SessionRegistry:
    """Indexes sessions by id, user and subscribed server.

    Mutations take a short lock; readers get snapshot lists so fan-out never
    holds the lock while delivering.

    Between ``register`` and ``subscribe`` a session reads its member servers.
    Servers it loses in that window are recorded and skipped by ``subscribe``,
    so a stale read cannot resubscribe it to a server it has left.
    """

    def __init__(self, max_total_connections: int = 10000, max_sessions_per_user: int = 5) -> None:
        self.max_total_connections = max_total_connections
        self.max_sessions_per_user = max_sessions_per_user
        self._sessions: dict[str, Session] = {}
        self._by_user: dict[int, set[str]] = {}
        self._by_server: dict[int, set[str]] = {}
        # session id -> servers removed before the session subscribed
        self._removed_early: dict[str, set[int]] = {}
        self._lock = asyncio.Lock()

    async def register(self, session: Session) -> str | None:
        """Add an authenticated session. Returns None on success, or a rejection reason."""
        async with self._lock:
            if len(self._sessions) >= self.max_total_connections:
                return "server_full"
            if len(self._by_user.get(session.user_id, ())) >= self.max_sessions_per_user:
                return "rate_limited"
            self._sessions[session.session_id] = session
            self._by_user.setdefault(session.user_id, set()).add(session.session_id)
            self._removed_early[session.session_id] = set()
        log.info("Registry: user %d connected (session %s)", session.user_id, session.session_id)
        return None

    async def subscribe(self, session: Session, server_ids: Iterable[int]) -> None:
        async with self._lock:
            if session.session_id not in self._sessions:
                return
            removed = self._removed_early.pop(session.session_id, set())
            for server_id in server_ids:
                if server_id in removed:
                    continue
                session.server_ids.add(server_id)
                self._by_server.setdefault(server_id, set()).add(session.session_id)
            session.state = SessionState.SUBSCRIBED

    async def unregister(self, session: Session) -> bool:
        """Remove *session* from every index. Returns True if the user has no sessions left."""
        async with self._lock:
            if self._sessions.pop(session.session_id, None) is None:
                return session.user_id not in self._by_user
            self._removed_early.pop(session.session_id, None)
            for server_id in session.server_ids:
                self._discard(self._by_server, server_id, session.session_id)
            self._discard(self._by_user, session.user_id, session.session_id)
            last = session.user_id not in self._by_user
        log.info("Registry: user %d disconnected (session %s)", session.user_id, session.session_id)
        return last

    async def add_user_server(self, user_id: int, server_id: int) -> None:
        """Subscribe every live session of *user_id* to *server_id*."""
        async with self._lock:
            for sid in self._by_user.get(user_id, ()):
                self._sessions[sid].server_ids.add(server_id)
                self._by_server.setdefault(server_id, set()).add(sid)
                if sid in self._removed_early:
                    self._removed_early[sid].discard(server_id)

    async def remove_user_server(self, user_id: int, server_id: int) -> None:
        async with self._lock:
            for sid in self._by_user.get(user_id, ()):
                self._sessions[sid].server_ids.discard(server_id)
                self._discard(self._by_server, server_id, sid)
                if sid in self._removed_early:
                    self._removed_early[sid].add(server_id)

    async def drop_server(self, server_id: int) -> None:
        async with self._lock:
            for sid in self._by_server.pop(server_id, set()):
                self._sessions[sid].server_ids.discard(server_id)
            for removed in self._removed_early.values():
                removed.add(server_id)

    @staticmethod
    def _discard(index: dict[int, set[str]], key: int, session_id: str) -> None:
        ids = index.get(key)
        if ids is None:
            return
        ids.discard(session_id)
        if not ids:
            del index[key]

    # --- Snapshot reads ---

    def sessions_for_server(self, server_id: int) -> list[Session]:
        return [self._sessions[sid] for sid in self._by_server.get(server_id, ())]

    def sessions_for_user(self, user_id: int) -> list[Session]:
        return [self._sessions[sid] for sid in self._by_user.get(user_id, ())]

    def has_user(self, user_id: int) -> bool:
        return user_id in self._by_user

    def __len__(self) -> int:
        return len(self._sessions)

    async def close_all(self, code: int, reason: str = "") -> None:
        """Close every live session (graceful shutdown)."""
        sessions = list(self._sessions.values())
        if sessions:
            await asyncio.gather(*(s.close(code, reason) for s in sessions), return_exceptions=True)
