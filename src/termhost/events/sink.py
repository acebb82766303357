"""Event sinks: where terminal events end up.

The terminal core only needs something with a ``send(event)`` method.
:class:`~termhost.events.wire.Wire` is the usual sink; :class:`CallbackSink`
adapts plain callables for embedding and the attach CLI.
"""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from termhost.events.wire import EventType, WireEvent


@runtime_checkable
class EventSink(Protocol):
    """Anything that accepts terminal events.

    ``send`` is called from the dispatcher thread, never concurrently.
    """

    def send(self, event: WireEvent) -> None: ...


class CallbackSink:
    """Route output/closed events to callables."""

    def __init__(
        self,
        on_output: Callable[[str, bytes], None] | None = None,
        on_closed: Callable[[str], None] | None = None,
    ) -> None:
        self._on_output = on_output
        self._on_closed = on_closed

    def send(self, event: WireEvent) -> None:
        if event.type == EventType.OUTPUT and self._on_output:
            self._on_output(event.session_id, event.data["data"])
        elif event.type == EventType.CLOSED and self._on_closed:
            self._on_closed(event.session_id)


class NullSink:
    """Discards every event."""

    def send(self, event: WireEvent) -> None:
        pass
