"""Terminal event delivery: wire bus and sink adapters."""

from termhost.events.sink import CallbackSink, EventSink, NullSink
from termhost.events.wire import EventType, Wire, WireEvent

__all__ = [
    "CallbackSink",
    "EventSink",
    "EventType",
    "NullSink",
    "Wire",
    "WireEvent",
]
