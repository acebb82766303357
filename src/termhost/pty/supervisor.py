"""Process supervisor: reaps shell processes so none become zombies."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading

logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """Owns every spawned shell and waits on each exactly once.

    A single thread polls adopted processes every ``interval`` seconds with a
    non-blocking wait. The wait is cancellable: :meth:`stop` ends the polling
    thread immediately instead of blocking on a child that never exits.
    """

    def __init__(self, interval: float = 0.1) -> None:
        self._interval = interval
        self._children: dict[str, subprocess.Popen] = {}
        self._exit_codes: dict[str, int] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def adopt(self, session_id: str, process: subprocess.Popen) -> None:
        """Take responsibility for reaping ``process``."""
        with self._lock:
            if self._stop.is_set():
                raise RuntimeError("Process supervisor is stopped")
            self._children[session_id] = process
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name="pty-supervisor", daemon=True
                )
                self._thread.start()

    def reap(self) -> list[str]:
        """Collect every exited child. Returns the session ids reaped."""
        with self._lock:
            children = list(self._children.items())
        reaped = []
        for session_id, process in children:
            code = process.poll()
            if code is None:
                continue
            with self._lock:
                self._children.pop(session_id, None)
                self._exit_codes[session_id] = code
            reaped.append(session_id)
            logger.info("Terminal %s shell exited (code=%s)", session_id, code)
        return reaped

    def returncode(self, session_id: str) -> int | None:
        """Exit status of a reaped shell, or None if still pending/unknown."""
        with self._lock:
            return self._exit_codes.get(session_id)

    def pending(self) -> list[str]:
        """Ids whose shells have not been reaped yet."""
        with self._lock:
            return list(self._children)

    def stop(self) -> None:
        """Cancel the polling thread. Adopted children stay adopted."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()

    def shutdown(self, timeout: float = 2.0) -> None:
        """Stop polling and kill whatever is still running.

        Remaining process groups get SIGKILL, then each child is waited on.
        """
        self.stop()
        self.reap()
        with self._lock:
            children = list(self._children.items())
        for session_id, process in children:
            try:
                os.killpg(process.pid, signal.SIGKILL)
                logger.info("Killed terminal %s (pgid=%d)", session_id, process.pid)
            except ProcessLookupError:
                logger.debug("Process group already gone: %d", process.pid)
            except PermissionError as e:
                logger.warning("Error killing terminal %s: %s", session_id, e)
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning("Terminal %s shell did not exit after SIGKILL", session_id)
        self.reap()

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.reap()
            except Exception:
                logger.exception("Process supervisor poll failed")
