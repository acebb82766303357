"""Session registry: the shared id -> session table."""

from __future__ import annotations

import threading
from typing import BinaryIO, Callable, TypeVar

from termhost.errors import SessionNotFoundError
from termhost.pty.session import TerminalSession

T = TypeVar("T")


class SessionRegistry:
    """Thread-safe mapping from session id to :class:`TerminalSession`.

    The registry lock guards only the dict itself. Blocking I/O performed
    through :meth:`with_writer` / :meth:`with_master` runs under the
    session's own lock, after the registry lock has been released.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, TerminalSession] = {}
        self._lock = threading.Lock()

    def insert(self, session: TerminalSession) -> None:
        """Register a session. Ids are unique; a duplicate is a bug."""
        with self._lock:
            if session.id in self._sessions:
                raise ValueError(f"Terminal {session.id} already registered")
            self._sessions[session.id] = session

    def get(self, session_id: str) -> TerminalSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def with_writer(self, session_id: str, fn: Callable[[BinaryIO], T]) -> T:
        """Run ``fn`` with exclusive access to the session's input sink.

        Raises:
            SessionNotFoundError: Unknown id, or closed concurrently.
        """
        with self._require(session_id).exclusive_writer() as sink:
            return fn(sink)

    def with_master(self, session_id: str, fn: Callable[[int], T]) -> T:
        """Run ``fn`` with the session's master fd.

        Raises:
            SessionNotFoundError: Unknown id, or closed concurrently.
        """
        with self._require(session_id).exclusive_master() as master_fd:
            return fn(master_fd)

    def remove(self, session_id: str) -> TerminalSession | None:
        """Unregister a session. Removing an absent id is a no-op."""
        with self._lock:
            return self._sessions.pop(session_id, None)

    def list_ids(self) -> list[str]:
        """Snapshot of the registered ids."""
        with self._lock:
            return list(self._sessions)

    def drain(self) -> list[TerminalSession]:
        """Remove and return every session."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        return sessions

    def _require(self, session_id: str) -> TerminalSession:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
