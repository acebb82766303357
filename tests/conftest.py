"""Shared fixtures: an event recorder and a manager running /bin/sh."""

from __future__ import annotations

import errno
import io
import threading
import time
from collections.abc import Iterator
from typing import Callable

import pytest

from termhost.config import TerminalConfig
from termhost.events.wire import EventType, WireEvent
from termhost.pty.manager import TerminalManager

TIMEOUT = 10.0


class BrokenWriter(io.RawIOBase):
    """Input sink whose writes fail the way a wedged PTY does."""

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        raise OSError(errno.EIO, "Input/output error")


class RecordingSink:
    """Thread-safe event sink that tests can wait on."""

    def __init__(self) -> None:
        self.events: list[WireEvent] = []
        self._cond = threading.Condition()

    def send(self, event: WireEvent) -> None:
        with self._cond:
            self.events.append(event)
            self._cond.notify_all()

    def wait_for(
        self, predicate: Callable[[], bool], timeout: float = TIMEOUT
    ) -> bool:
        deadline = time.monotonic() + timeout
        with self._cond:
            while not predicate():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def output(self, session_id: str) -> bytes:
        with self._cond:
            return b"".join(
                e.data["data"]
                for e in self.events
                if e.type == EventType.OUTPUT and e.session_id == session_id
            )

    def closed_count(self, session_id: str) -> int:
        with self._cond:
            return sum(
                1
                for e in self.events
                if e.type == EventType.CLOSED and e.session_id == session_id
            )

    def wait_for_output(
        self, session_id: str, needle: bytes, timeout: float = TIMEOUT
    ) -> bool:
        return self.wait_for(lambda: needle in self.output(session_id), timeout)

    def wait_for_closed(self, session_id: str, timeout: float = TIMEOUT) -> bool:
        return self.wait_for(lambda: self.closed_count(session_id) > 0, timeout)


def wait_until(predicate: Callable[[], bool], timeout: float = TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def manager(sink: RecordingSink) -> Iterator[TerminalManager]:
    config = TerminalConfig(default_shell="/bin/sh", reap_interval=0.05)
    mgr = TerminalManager(sink=sink, config=config)
    yield mgr
    mgr.shutdown()


@pytest.fixture(autouse=True)
def _plain_sh(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make /bin/sh (the configured default) win over the developer's $SHELL."""
    monkeypatch.delenv("SHELL", raising=False)
