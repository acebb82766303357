"""Terminal manager: spawn, drive and tear down PTY-backed shells."""

from __future__ import annotations

import logging
import os
import threading
import uuid
from dataclasses import dataclass
from typing import BinaryIO

from termhost.config import TerminalConfig
from termhost.errors import ResourceError, TerminalIOError
from termhost.events.sink import EventSink, NullSink
from termhost.pty.channel import EventChannel
from termhost.pty.factory import PseudoterminalFactory, set_window_size
from termhost.pty.reader import ReaderLoop
from termhost.pty.registry import SessionRegistry
from termhost.pty.session import TerminalSession
from termhost.pty.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

_UINT16_MAX = 0xFFFF


@dataclass(frozen=True)
class TerminalInfo:
    """Result of a successful spawn."""

    id: str
    shell: str


class TerminalManager:
    """Manages the lifecycle of multiple terminal sessions.

    Every public method is thread-safe. The manager ensures:
    - Sessions are tracked and can be looked up by id
    - Output is forwarded byte-exact, in order, per session
    - Each session produces exactly one ``closed`` event
    - Every shell is reaped (no zombies), and all are killed on shutdown

    Events go to ``sink`` from a single dispatcher thread.
    """

    def __init__(
        self, sink: EventSink | None = None, config: TerminalConfig | None = None
    ) -> None:
        self._config = config or TerminalConfig()
        self._factory = PseudoterminalFactory(self._config)
        self._registry = SessionRegistry()
        self._supervisor = ProcessSupervisor(interval=self._config.reap_interval)
        self._channel = EventChannel(
            sink or NullSink(), maxsize=self._config.event_queue_size
        )
        self._readers: dict[str, ReaderLoop] = {}
        self._readers_lock = threading.Lock()
        self._shutdown = False
        self._channel.start()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def spawn(self, shell: str | None = None, cwd: str | None = None) -> TerminalInfo:
        """Spawn a new shell session.

        Returns as soon as the session is registered and its reader is
        running, not when the shell has printed a prompt.

        Args:
            shell: Shell executable. Defaults to $SHELL, then the configured default.
            cwd: Working directory for the shell.

        Raises:
            ResourceError: PTY allocation, spawn, or reader setup failed.
                Nothing is registered in that case.
        """
        if self._shutdown:
            raise ResourceError("Terminal manager is shut down")

        spawned = self._factory.spawn(shell, cwd)
        session_id = str(uuid.uuid4())

        try:
            writer = open(spawned.writer_fd, "wb")
        except OSError as e:
            for fd in (spawned.writer_fd, spawned.reader_fd):
                os.close(fd)
            os.close(spawned.master_fd)
            self._supervisor.adopt(session_id, spawned.process)
            raise ResourceError(f"Failed to get writer: {e}") from e

        session = TerminalSession(
            id=session_id,
            shell=spawned.shell,
            cwd=cwd,
            process=spawned.process,
            master_fd=spawned.master_fd,
            writer=writer,
        )
        self._supervisor.adopt(session_id, spawned.process)

        try:
            reader = ReaderLoop(
                session_id,
                spawned.reader_fd,
                self._channel,
                on_exit=self._on_reader_exit,
                chunk_size=self._config.read_chunk_size,
            )
        except OSError as e:
            os.close(spawned.reader_fd)
            session.close()
            raise ResourceError(f"Failed to clone reader: {e}") from e

        self._registry.insert(session)
        try:
            session.start(reader)
        except RuntimeError as e:
            self._registry.remove(session_id)
            reader.discard()
            session.close()
            raise ResourceError(f"Failed to start reader: {e}") from e

        with self._readers_lock:
            self._readers[session_id] = reader
        return TerminalInfo(id=session_id, shell=spawned.shell)

    def write(self, session_id: str, data: bytes) -> None:
        """Write all of ``data`` to the shell and flush.

        Raises:
            SessionNotFoundError: No such session.
            TerminalIOError: The write or flush failed; the session stays open.
        """

        def _write(sink: BinaryIO) -> None:
            sink.write(data)
            sink.flush()

        try:
            self._registry.with_writer(session_id, _write)
        except OSError as e:
            raise TerminalIOError(f"Failed to write to terminal: {e}") from e

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        """Resize the session's PTY.

        Raises:
            ValueError: ``cols`` or ``rows`` outside 0..65535.
            SessionNotFoundError: No such session.
            TerminalIOError: The resize ioctl failed.
        """
        for name, value in (("cols", cols), ("rows", rows)):
            if not 0 <= value <= _UINT16_MAX:
                raise ValueError(f"{name} must be between 0 and {_UINT16_MAX}, got {value}")
        try:
            self._registry.with_master(
                session_id, lambda fd: set_window_size(fd, cols, rows)
            )
        except OSError as e:
            raise TerminalIOError(f"Failed to resize terminal: {e}") from e

    def close(self, session_id: str) -> None:
        """Close a session. Unknown ids are ignored; this never raises.

        The shell receives SIGHUP and the reader is woken, but neither is
        waited for: the ``closed`` event follows asynchronously.
        """
        session = self._registry.remove(session_id)
        if session is not None:
            session.close()

    def list_ids(self) -> list[str]:
        """Snapshot of live session ids."""
        return self._registry.list_ids()

    def get(self, session_id: str) -> TerminalSession | None:
        """Look up a live session."""
        return self._registry.get(session_id)

    def returncode(self, session_id: str) -> int | None:
        """Exit status of a session's shell once it has been reaped."""
        return self._supervisor.returncode(session_id)

    def shutdown(self) -> None:
        """Close every session and stop background threads. Called on exit."""
        if self._shutdown:
            return
        self._shutdown = True

        for session in self._registry.drain():
            session.close()

        with self._readers_lock:
            readers = list(self._readers.values())
        for reader in readers:
            if not reader.join(self._config.shutdown_timeout):
                logger.warning("PTY reader %s did not stop", reader.session_id)

        self._supervisor.shutdown(timeout=self._config.shutdown_timeout)
        self._channel.close(timeout=self._config.shutdown_timeout)
        logger.info("All terminal sessions cleaned up")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_reader_exit(self, session_id: str) -> None:
        """Reader loop ended: drop the session if close() has not already."""
        session = self._registry.remove(session_id)
        if session is not None:
            session.close()
        with self._readers_lock:
            self._readers.pop(session_id, None)

    def __enter__(self) -> TerminalManager:
        return self

    def __exit__(self, *exc: object) -> None:
        self.shutdown()

    def __len__(self) -> int:
        return len(self._registry)
