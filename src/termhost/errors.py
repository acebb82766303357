"""Exception hierarchy for termhost.

Every failure surfaced by the terminal core, the file layer, and the build
layer derives from :class:`TermhostError`, so hosts can catch one type and
keep running.
"""

from __future__ import annotations


class TermhostError(Exception):
    """Base class for all termhost errors."""


class ResourceError(TermhostError):
    """PTY allocation, process spawn, or handle acquisition failed.

    Scoped to a single spawn call; never fatal to the hosting process.
    """


class SessionNotFoundError(TermhostError):
    """An operation referenced a session id that is not registered."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Terminal {session_id} not found")
        self.session_id = session_id


class TerminalIOError(TermhostError):
    """Write, flush, or resize failed on an otherwise live session."""


class FileOperationError(TermhostError):
    """A file layer operation failed."""
