"""Reader loop: one thread per session forwarding raw PTY output."""

from __future__ import annotations

import logging
import os
import selectors
import threading
from typing import Callable

from termhost.events.wire import WireEvent
from termhost.pty.channel import EventChannel

logger = logging.getLogger(__name__)


class ReaderLoop:
    """Blocks on the PTY master and pushes ``output`` events onto the channel.

    The loop owns ``fd`` (its own dup of the master) and a wake pipe. It ends
    on end-of-stream, a read error, or :meth:`stop`; then it calls
    ``on_exit(session_id)``, closes its handles and emits exactly one
    ``closed`` event. Bytes are forwarded exactly as read.
    """

    def __init__(
        self,
        session_id: str,
        fd: int,
        channel: EventChannel,
        on_exit: Callable[[str], None],
        chunk_size: int = 4096,
    ) -> None:
        self.session_id = session_id
        self._fd = fd
        self._channel = channel
        self._on_exit = on_exit
        self._chunk_size = chunk_size
        # Raises OSError when out of fds; the caller owns ``fd`` until we return.
        self._wake_r, self._wake_w = os.pipe()
        self._handles_lock = threading.Lock()
        self._handles_open = True
        self._thread = threading.Thread(
            target=self._run, name=f"pty-reader-{session_id[:8]}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        """Wake the loop so it exits without waiting for the shell."""
        with self._handles_lock:
            if not self._handles_open:
                return
            try:
                os.write(self._wake_w, b"\0")
            except OSError as e:
                logger.debug("Wake write for reader %s failed: %s", self.session_id, e)

    def discard(self) -> None:
        """Release handles of a loop that was never started."""
        self._close_handles()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the thread. Returns True if it has exited."""
        if self._thread.ident is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        reason = "end of stream"
        selector = selectors.DefaultSelector()
        try:
            selector.register(self._fd, selectors.EVENT_READ)
            selector.register(self._wake_r, selectors.EVENT_READ)
            while True:
                ready = {key.fd for key, _ in selector.select()}
                if self._wake_r in ready:
                    reason = "stop requested"
                    break
                try:
                    data = os.read(self._fd, self._chunk_size)
                except OSError as e:
                    # EIO once the slave side is gone
                    reason = f"read error: {e}"
                    break
                if not data:
                    break
                self._channel.put(WireEvent.output(self.session_id, data))
        except Exception as e:
            reason = f"reader failure: {e}"
            logger.exception("PTY reader %s failed", self.session_id)
        finally:
            selector.close()
            self._close_handles()
            logger.debug("PTY reader %s ended: %s", self.session_id, reason)
            try:
                self._on_exit(self.session_id)
            except Exception:
                logger.exception("Error in exit handler for terminal %s", self.session_id)
            self._channel.put(WireEvent.closed(self.session_id))

    def _close_handles(self) -> None:
        with self._handles_lock:
            if not self._handles_open:
                return
            self._handles_open = False
            for fd in (self._fd, self._wake_r, self._wake_w):
                try:
                    os.close(fd)
                except OSError:
                    pass
