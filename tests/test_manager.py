"""Integration tests for termhost.pty.manager.TerminalManager.

These run real /bin/sh sessions on real pseudo-terminals.
"""

from __future__ import annotations

import os
import threading
import time

import pytest

from termhost.config import TerminalConfig
from termhost.errors import ResourceError, SessionNotFoundError, TerminalIOError
from termhost.pty.manager import TerminalManager
from termhost.pty.session import TerminalStatus

from conftest import BrokenWriter, RecordingSink, wait_until


# ---------------------------------------------------------------------------
# spawn
# ---------------------------------------------------------------------------


class TestSpawn:
    def test_id_listed_exactly_once(self, manager: TerminalManager) -> None:
        info = manager.spawn()
        assert manager.list_ids().count(info.id) == 1
        assert info.shell == "/bin/sh"

    def test_immediate_write_succeeds(self, manager: TerminalManager) -> None:
        info = manager.spawn()
        manager.write(info.id, b"\n")

    def test_ids_are_unique(self, manager: TerminalManager) -> None:
        ids = {manager.spawn().id for _ in range(5)}
        assert len(ids) == 5
        assert sorted(manager.list_ids()) == sorted(ids)

    def test_session_is_running(self, manager: TerminalManager) -> None:
        info = manager.spawn()
        session = manager.get(info.id)
        assert session is not None
        assert session.status is TerminalStatus.RUNNING
        assert session.alive

    def test_spawn_failure_registers_nothing(self, manager: TerminalManager) -> None:
        with pytest.raises(ResourceError):
            manager.spawn(shell="/nonexistent/shell")
        assert manager.list_ids() == []

    def test_spawn_after_shutdown(self, manager: TerminalManager) -> None:
        manager.shutdown()
        with pytest.raises(ResourceError):
            manager.spawn()

    def test_cwd(self, manager: TerminalManager, sink: RecordingSink, tmp_path) -> None:
        info = manager.spawn(cwd=str(tmp_path))
        manager.write(info.id, b"pwd\n")
        assert sink.wait_for_output(info.id, os.path.realpath(tmp_path).encode())
        manager.close(info.id)
        assert info.id not in manager.list_ids()

    def test_environment_reaches_shell(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        info = manager.spawn()
        manager.write(info.id, b"echo T=$TERM C=$COLORTERM\n")
        assert sink.wait_for_output(info.id, b"T=xterm-256color C=truecolor")


# ---------------------------------------------------------------------------
# write / output
# ---------------------------------------------------------------------------


class TestWrite:
    def test_echo_reaches_output(self, manager: TerminalManager, sink: RecordingSink) -> None:
        info = manager.spawn()
        manager.write(info.id, b"ls\n")
        assert sink.wait_for_output(info.id, b"ls")

    def test_command_output(self, manager: TerminalManager, sink: RecordingSink) -> None:
        info = manager.spawn()
        manager.write(info.id, b"echo $((6 * 7))\n")
        assert sink.wait_for_output(info.id, b"42")

    def test_bytes_forwarded_unmodified(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        info = manager.spawn()
        # e-acute in UTF-8, then a byte that is never valid UTF-8
        manager.write(info.id, b"printf '<\\303\\251\\377>'\n")
        assert sink.wait_for_output(info.id, b"<\xc3\xa9\xff>")

    def test_unknown_id(self, manager: TerminalManager) -> None:
        with pytest.raises(SessionNotFoundError):
            manager.write("nope", b"ls\n")

    def test_sessions_are_isolated(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        a = manager.spawn()
        b = manager.spawn()
        manager.write(a.id, b"echo alpha_$((1+1))\n")
        manager.write(b.id, b"echo bravo_$((2+2))\n")
        assert sink.wait_for_output(a.id, b"alpha_2")
        assert sink.wait_for_output(b.id, b"bravo_4")
        assert b"bravo" not in sink.output(a.id)
        assert b"alpha" not in sink.output(b.id)

    def test_concurrent_writers_same_session(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        info = manager.spawn()
        errors: list[Exception] = []

        def write(tag: str) -> None:
            try:
                manager.write(info.id, f"echo {tag}_done\n".encode())
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(f"w{i}",)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        for i in range(4):
            assert sink.wait_for_output(info.id, f"w{i}_done".encode())

    def test_ctrl_c_interrupts_foreground_job(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        # Needs the PTY to be the shell's controlling terminal.
        info = manager.spawn()
        manager.write(info.id, b"sleep 30\n")
        time.sleep(0.3)
        manager.write(info.id, b"\x03")
        manager.write(info.id, b"echo after_$((1+2))\n")
        assert sink.wait_for_output(info.id, b"after_3")

    def test_write_failure_keeps_session(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        info = manager.spawn()
        session = manager.get(info.id)
        assert session is not None
        session.writer.close()
        session.writer = BrokenWriter()

        with pytest.raises(TerminalIOError, match="Failed to write to terminal"):
            manager.write(info.id, b"ls\n")
        assert info.id in manager.list_ids()
        assert session.alive
        assert sink.closed_count(info.id) == 0


# ---------------------------------------------------------------------------
# resize
# ---------------------------------------------------------------------------


class TestResize:
    def test_resize_live_session(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        info = manager.spawn()
        manager.resize(info.id, cols=132, rows=43)
        manager.write(info.id, b"stty size\n")
        assert sink.wait_for_output(info.id, b"43 132")

    def test_resize_unknown_id(self, manager: TerminalManager) -> None:
        with pytest.raises(SessionNotFoundError):
            manager.resize("nope", cols=132, rows=43)

    def test_resize_out_of_range(self, manager: TerminalManager) -> None:
        info = manager.spawn()
        with pytest.raises(ValueError):
            manager.resize(info.id, cols=70000, rows=24)
        with pytest.raises(ValueError):
            manager.resize(info.id, cols=80, rows=-1)

    def test_resize_failure_keeps_session(self, manager: TerminalManager) -> None:
        info = manager.spawn()
        session = manager.get(info.id)
        assert session is not None
        # A pipe is not a terminal, so TIOCSWINSZ fails with ENOTTY.
        r, w = os.pipe()
        os.close(session.master_fd)
        session.master_fd = r
        try:
            with pytest.raises(TerminalIOError, match="Failed to resize terminal"):
                manager.resize(info.id, cols=100, rows=30)
            assert info.id in manager.list_ids()
            assert session.alive
        finally:
            os.close(w)


# ---------------------------------------------------------------------------
# close
# ---------------------------------------------------------------------------


class TestClose:
    def test_close_twice(self, manager: TerminalManager) -> None:
        info = manager.spawn()
        manager.close(info.id)
        manager.close(info.id)

    def test_close_unknown_id(self, manager: TerminalManager) -> None:
        manager.close("never-existed")

    def test_write_after_close(self, manager: TerminalManager) -> None:
        info = manager.spawn()
        manager.close(info.id)
        with pytest.raises(SessionNotFoundError):
            manager.write(info.id, b"ls\n")
        with pytest.raises(SessionNotFoundError):
            manager.resize(info.id, 80, 24)

    def test_close_emits_single_closed_event(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        info = manager.spawn()
        manager.close(info.id)
        assert sink.wait_for_closed(info.id)
        time.sleep(0.2)
        assert sink.closed_count(info.id) == 1

    def test_close_hangs_up_and_reaps_shell(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        info = manager.spawn()
        session = manager.get(info.id)
        assert session is not None
        manager.close(info.id)
        assert session.status is TerminalStatus.CLOSED
        assert wait_until(lambda: manager.returncode(info.id) is not None)

    def test_session_close_idempotent(self, manager: TerminalManager) -> None:
        info = manager.spawn()
        session = manager.get(info.id)
        assert session is not None
        assert session.close() is True
        assert session.close() is False

    def test_close_leaves_other_sessions(
        self, manager: TerminalManager, sink: RecordingSink
    ) -> None:
        a = manager.spawn()
        b = manager.spawn()
        manager.close(a.id)
        manager.write(b.id, b"echo still_$((3+3))\n")
        assert sink.wait_for_output(b.id, b"still_6")
        assert manager.list_ids() == [b.id]


# ---------------------------------------------------------------------------
# shell exit
# ---------------------------------------------------------------------------


class TestShellExit:
    def test_exit_closes_session(self, manager: TerminalManager, sink: RecordingSink) -> None:
        info = manager.spawn()
        manager.write(info.id, b"exit\n")
        assert sink.wait_for_closed(info.id)
        assert info.id not in manager.list_ids()
        time.sleep(0.2)
        assert sink.closed_count(info.id) == 1

    def test_exit_status_reaped(self, manager: TerminalManager, sink: RecordingSink) -> None:
        info = manager.spawn()
        manager.write(info.id, b"exit 7\n")
        assert sink.wait_for_closed(info.id)
        assert wait_until(lambda: manager.returncode(info.id) == 7)

    def test_closed_event_after_unregistering(self, sink: RecordingSink) -> None:
        ids_at_close: list[list[str]] = []
        manager_ref: list[TerminalManager] = []

        class Observer:
            def send(self, event) -> None:
                sink.send(event)
                if event.type.value == "closed":
                    ids_at_close.append(manager_ref[0].list_ids())

        mgr = TerminalManager(sink=Observer(), config=TerminalConfig(default_shell="/bin/sh"))
        manager_ref.append(mgr)
        try:
            info = mgr.spawn()
            mgr.write(info.id, b"exit\n")
            assert sink.wait_for_closed(info.id)
            assert ids_at_close == [[]]
        finally:
            mgr.shutdown()

    def test_close_racing_exit(self, manager: TerminalManager, sink: RecordingSink) -> None:
        info = manager.spawn()
        manager.write(info.id, b"exit\n")
        manager.close(info.id)
        manager.close(info.id)
        assert sink.wait_for_closed(info.id)
        time.sleep(0.2)
        assert sink.closed_count(info.id) == 1


# ---------------------------------------------------------------------------
# shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    def test_shutdown_closes_everything(self, sink: RecordingSink) -> None:
        mgr = TerminalManager(sink=sink, config=TerminalConfig(default_shell="/bin/sh"))
        ids = [mgr.spawn().id for _ in range(3)]
        mgr.shutdown()
        assert mgr.list_ids() == []
        for sid in ids:
            assert sink.closed_count(sid) == 1
            assert mgr.returncode(sid) is not None

    def test_context_manager(self, sink: RecordingSink) -> None:
        with TerminalManager(sink=sink, config=TerminalConfig(default_shell="/bin/sh")) as mgr:
            info = mgr.spawn()
            assert len(mgr) == 1
        assert sink.closed_count(info.id) == 1

    def test_shutdown_idempotent(self, manager: TerminalManager) -> None:
        manager.spawn()
        manager.shutdown()
        manager.shutdown()
