"""Event channel: bounded queue between reader loops and the event sink."""

from __future__ import annotations

import logging
import queue
import threading

from termhost.events.sink import EventSink
from termhost.events.wire import WireEvent

logger = logging.getLogger(__name__)

_POLL = 0.1


class EventChannel:
    """FIFO from many reader threads to one dispatcher thread.

    The queue is bounded: when subscribers fall behind, ``put`` blocks the
    reader, which in turn stops draining the PTY. Closing the channel
    delivers what is already queued, then stops the dispatcher; later
    ``put`` calls are dropped.
    """

    def __init__(self, sink: EventSink, maxsize: int = 1024) -> None:
        self._sink = sink
        self._queue: queue.Queue[WireEvent | None] = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._thread = threading.Thread(
            target=self._dispatch, name="pty-dispatcher", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def put(self, event: WireEvent) -> bool:
        """Enqueue an event, blocking while the channel is full.

        Returns False if the channel was closed before the event got in.
        """
        while not self._closed.is_set():
            try:
                self._queue.put(event, timeout=_POLL)
                return True
            except queue.Full:
                continue
        return False

    def close(self, timeout: float | None = None) -> None:
        """Stop accepting events, flush the queue to the sink, stop dispatching."""
        if self._closed.is_set():
            return
        self._closed.set()
        if not self._thread.is_alive():
            return
        while self._thread.is_alive():
            try:
                self._queue.put(None, timeout=_POLL)
                break
            except queue.Full:
                continue
        self._thread.join(timeout)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _dispatch(self) -> None:
        while True:
            event = self._queue.get()
            if event is None:
                break
            try:
                self._sink.send(event)
            except Exception:
                logger.exception(
                    "Event sink failed on %s for terminal %s",
                    event.type.value,
                    event.session_id,
                )
