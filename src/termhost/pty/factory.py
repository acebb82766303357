"""Pseudoterminal factory: open a PTY pair and spawn a shell on it."""

from __future__ import annotations

import fcntl
import logging
import os
import pty
import struct
import subprocess
import termios
from collections.abc import Mapping
from dataclasses import dataclass

from termhost.config import TerminalConfig
from termhost.errors import ResourceError

logger = logging.getLogger(__name__)

# Variables copied from the host environment when present. Never invented.
_PROPAGATED_ENV = ("PATH", "HOME", "USER")


@dataclass
class SpawnedTerminal:
    """Raw handles produced by a successful spawn.

    ``master_fd`` is retained by the session for resize, ``writer_fd`` becomes
    its input sink and ``reader_fd`` belongs to the reader loop. All three
    refer to the same PTY master.
    """

    shell: str
    process: subprocess.Popen
    master_fd: int
    reader_fd: int
    writer_fd: int


def set_window_size(fd: int, cols: int, rows: int) -> None:
    """Apply a window size to a PTY fd (TIOCSWINSZ)."""
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); fd 0 is already the slave.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PseudoterminalFactory:
    """Opens PTY pairs and spawns shells attached to the slave side.

    Spawning goes through subprocess.Popen with a ``preexec_fn``, which
    CPython documents as not safe while other threads run, and reader,
    dispatcher and supervisor threads always are. The hook is kept to one
    ioctl (TIOCSCTTY) that takes no Python-level locks; it is what gives the
    shell a controlling terminal for job control and SIGINT on Ctrl-C.
    """

    def __init__(self, config: TerminalConfig | None = None) -> None:
        self._config = config or TerminalConfig()

    def resolve_shell(
        self, shell: str | None, environ: Mapping[str, str] | None = None
    ) -> str:
        """Explicit argument > $SHELL > configured default."""
        if shell:
            return shell
        environ = os.environ if environ is None else environ
        return environ.get("SHELL") or self._config.default_shell

    def build_environment(
        self, environ: Mapping[str, str] | None = None
    ) -> dict[str, str]:
        """Build the child's environment from scratch."""
        environ = os.environ if environ is None else environ
        env = {
            "TERM": self._config.term,
            "COLORTERM": self._config.colorterm,
            "LANG": environ.get("LANG") or self._config.fallback_lang,
        }
        for key in _PROPAGATED_ENV:
            value = environ.get(key)
            if value is not None:
                env[key] = value
        return env

    def spawn(self, shell: str | None = None, cwd: str | None = None) -> SpawnedTerminal:
        """Open a PTY at the configured size and start a shell on it.

        Raises:
            ResourceError: PTY allocation, spawn, or handle duplication failed.
                No file descriptors leak and no child is left attached.
        """
        shell_path = self.resolve_shell(shell)
        env = self.build_environment()

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise ResourceError(f"Failed to create PTY: {e}") from e

        try:
            set_window_size(master_fd, self._config.cols, self._config.rows)
        except OSError as e:
            os.close(master_fd)
            os.close(slave_fd)
            raise ResourceError(f"Failed to size PTY: {e}") from e

        try:
            process = subprocess.Popen(
                [shell_path],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
                env=env,
                cwd=cwd,
                close_fds=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise ResourceError(f"Failed to spawn shell {shell_path}: {e}") from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        try:
            reader_fd = os.dup(master_fd)
        except OSError as e:
            _abandon(process, master_fd)
            raise ResourceError(f"Failed to clone reader: {e}") from e

        try:
            writer_fd = os.dup(master_fd)
        except OSError as e:
            os.close(reader_fd)
            _abandon(process, master_fd)
            raise ResourceError(f"Failed to get writer: {e}") from e

        logger.debug(
            "Spawned %s (pid=%d) on PTY %dx%d", shell_path, process.pid,
            self._config.cols, self._config.rows,
        )
        return SpawnedTerminal(
            shell=shell_path,
            process=process,
            master_fd=master_fd,
            reader_fd=reader_fd,
            writer_fd=writer_fd,
        )


def _abandon(process: subprocess.Popen, master_fd: int) -> None:
    """Tear down a half-built spawn: drop the master and reap the child."""
    os.close(master_fd)
    try:
        process.kill()
        process.wait(timeout=2)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Could not reap abandoned shell pid=%d: %s", process.pid, e)
