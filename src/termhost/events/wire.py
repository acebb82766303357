"""Wire protocol: decouples terminal sessions from their subscribers.

Events flow from PTY reader threads to whoever is listening (stdio server,
attach CLI, tests). Subscribers hold an ``asyncio.Queue`` bound to their own
event loop; ``send()`` may be called from any thread.
"""

from __future__ import annotations

import asyncio
import enum
import threading
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    OUTPUT = "output"
    CLOSED = "closed"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def output(cls, session_id: str, data: bytes) -> WireEvent:
        return cls(type=EventType.OUTPUT, data={"id": session_id, "data": data})

    @classmethod
    def closed(cls, session_id: str) -> WireEvent:
        return cls(type=EventType.CLOSED, data={"id": session_id})

    @property
    def session_id(self) -> str:
        return self.data.get("id", "")


@dataclass
class _Subscription:
    queue: asyncio.Queue[WireEvent | None]
    loop: asyncio.AbstractEventLoop | None


class Wire:
    """Async message bus: terminal sessions -> subscribers.

    Multi-producer, multi-consumer broadcast. Delivery into a subscriber
    queue happens on that subscriber's loop via ``call_soon_threadsafe``
    when ``send()`` runs on another thread.
    """

    def __init__(self) -> None:
        self._subscribers: list[_Subscription] = []
        self._lock = threading.Lock()
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        with self._lock:
            if self._closed:
                return
            subscribers = list(self._subscribers)
        for sub in subscribers:
            _deliver(sub, event)

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from.

        When called inside a running event loop, events sent from other
        threads are marshalled onto that loop.
        """
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        with self._lock:
            self._subscribers.append(_Subscription(queue=q, loop=loop))
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        with self._lock:
            self._subscribers = [s for s in self._subscribers if s.queue is not q]

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = list(self._subscribers)
        for sub in subscribers:
            _deliver(sub, None, after_pending=True)


def _deliver(
    sub: _Subscription, event: WireEvent | None, after_pending: bool = False
) -> None:
    # after_pending: always go through the loop, behind already-marshalled events
    if sub.loop is None or (not after_pending and _running_loop() is sub.loop):
        sub.queue.put_nowait(event)
        return
    try:
        sub.loop.call_soon_threadsafe(sub.queue.put_nowait, event)
    except RuntimeError:
        # Subscriber's loop already closed; nobody is reading that queue.
        pass


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
