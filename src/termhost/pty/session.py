"""Terminal session: one shell process and its PTY handles."""

from __future__ import annotations

import enum
import logging
import os
import signal
import subprocess
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, BinaryIO

from termhost.errors import SessionNotFoundError

if TYPE_CHECKING:
    from termhost.pty.reader import ReaderLoop

logger = logging.getLogger(__name__)


class TerminalStatus(enum.Enum):
    """Lifecycle states for a terminal session."""

    CREATED = "created"
    RUNNING = "running"  # Registered, reader active
    CLOSED = "closed"  # Terminal; handles released


@dataclass
class TerminalSession:
    """A shell attached to a pseudo-terminal.

    Owns the input sink (a buffered writer over a dup of the PTY master) and
    the master fd used for resizing. The child process handle is shared with
    the supervisor, which is the only party that waits on it.

    Writers and resizers take separate locks, so a write blocked on a full
    PTY buffer does not hold up a resize of the same session, and never
    holds up anything on other sessions.
    """

    shell: str
    process: subprocess.Popen
    master_fd: int
    writer: BinaryIO
    cwd: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    _status: TerminalStatus = field(default=TerminalStatus.CREATED, init=False)
    _reader: ReaderLoop | None = field(default=None, init=False)
    _state_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _master_lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def start(self, reader: ReaderLoop) -> None:
        """Attach the reader loop and start it. CREATED -> RUNNING."""
        with self._state_lock:
            if self._status is not TerminalStatus.CREATED:
                raise RuntimeError(f"Terminal {self.id} already {self._status.value}")
            self._reader = reader
            reader.start()
            self._status = TerminalStatus.RUNNING
        logger.info(
            "Terminal %s started: pid=%d shell=%s cwd=%s",
            self.id,
            self.process.pid,
            self.shell,
            self.cwd or ".",
        )

    @contextmanager
    def exclusive_writer(self) -> Iterator[BinaryIO]:
        """Hold the input sink for the duration of the block.

        Raises:
            SessionNotFoundError: The session was closed.
        """
        with self._write_lock:
            if self._status is TerminalStatus.CLOSED:
                raise SessionNotFoundError(self.id)
            try:
                yield self.writer
            finally:
                # close() could not take the lock while we held it
                if self._status is TerminalStatus.CLOSED:
                    self._release_writer()

    @contextmanager
    def exclusive_master(self) -> Iterator[int]:
        """Hold the master fd for the duration of the block.

        Raises:
            SessionNotFoundError: The session was closed.
        """
        with self._master_lock:
            if self._status is TerminalStatus.CLOSED or self.master_fd < 0:
                raise SessionNotFoundError(self.id)
            yield self.master_fd

    def close(self) -> bool:
        """Release the session's handles and hang up the shell.

        Idempotent. Returns True only for the call that actually closed it.
        Does not wait for the reader thread or the child process.
        """
        with self._state_lock:
            if self._status is TerminalStatus.CLOSED:
                return False
            self._status = TerminalStatus.CLOSED
            reader = self._reader

        if reader is not None:
            reader.stop()

        with self._master_lock:
            if self.master_fd >= 0:
                try:
                    os.close(self.master_fd)
                except OSError as e:
                    logger.warning("Error closing master of terminal %s: %s", self.id, e)
                self.master_fd = -1

        if self._write_lock.acquire(blocking=False):
            try:
                self._release_writer()
            finally:
                self._write_lock.release()

        self.hangup()
        logger.info("Terminal %s closed", self.id)
        return True

    def hangup(self) -> None:
        """Send SIGHUP to the shell's process group unless it was already reaped."""
        if self.process.returncode is not None:
            return
        try:
            # start_new_session=True makes the shell its own group leader
            os.killpg(self.process.pid, signal.SIGHUP)
            logger.debug("Sent SIGHUP to terminal %s (pgid=%d)", self.id, self.process.pid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self.process.pid)
        except PermissionError as e:
            logger.warning("Cannot hang up terminal %s: %s", self.id, e)

    def _release_writer(self) -> None:
        if self.writer.closed:
            return
        try:
            self.writer.close()
        except OSError as e:
            # Unflushed input from a failed write; the PTY is going away anyway.
            logger.debug("Discarded pending input for terminal %s: %s", self.id, e)

    @property
    def status(self) -> TerminalStatus:
        return self._status

    @property
    def alive(self) -> bool:
        return self._status is TerminalStatus.RUNNING

    @property
    def pid(self) -> int:
        return self.process.pid
