"""CLI entry point for termhost."""

from __future__ import annotations

import asyncio
import logging
import os
import selectors
import signal
import sys
import termios
import threading
import tty
from typing import TYPE_CHECKING

import typer

from termhost.config import TermhostConfig
from termhost.errors import SessionNotFoundError, TermhostError

if TYPE_CHECKING:
    from termhost.pty.manager import TerminalManager

app = typer.Typer(
    name="termhost",
    help="Host PTY-backed shell sessions and stream their output to a client.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


@app.command()
def serve(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Serve terminals, files and builds as JSON lines over stdin/stdout."""
    from termhost.server.stdio import serve as run_server

    setup_logging(verbose)
    config = TermhostConfig.load(config_file)
    asyncio.run(run_server(config))


@app.command()
def attach(
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell to run (default: $SHELL)."
    ),
    cwd: str | None = typer.Option(
        None, "--cwd", "-C", help="Working directory for the shell."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run one managed session attached to this terminal.

    Local keystrokes go to the session; its output is copied to stdout
    verbatim. Window size changes are forwarded. Exits when the shell does.
    """
    from termhost.events.sink import CallbackSink
    from termhost.pty.manager import TerminalManager

    if not sys.stdin.isatty():
        typer.echo("Error: attach needs an interactive terminal on stdin.", err=True)
        raise typer.Exit(1)

    setup_logging(verbose)
    config = TermhostConfig.load(config_file)
    # Keep log lines from landing in the middle of the shell's screen.
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.WARNING)

    done = threading.Event()
    stdout_fd = sys.stdout.fileno()

    def on_output(session_id: str, data: bytes) -> None:
        os.write(stdout_fd, data)

    def on_closed(session_id: str) -> None:
        done.set()

    manager = TerminalManager(
        sink=CallbackSink(on_output=on_output, on_closed=on_closed),
        config=config.terminal,
    )
    try:
        info = manager.spawn(shell=shell, cwd=cwd)
    except TermhostError as e:
        manager.shutdown()
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    stdin_fd = sys.stdin.fileno()
    # SIGWINCH only pokes a wakeup pipe; resizes run in the pump loop, never
    # in signal context.
    wake_r, wake_w = os.pipe()
    os.set_blocking(wake_r, False)
    os.set_blocking(wake_w, False)

    saved = termios.tcgetattr(stdin_fd)
    previous_wakeup = signal.set_wakeup_fd(wake_w)
    previous_winch = signal.signal(signal.SIGWINCH, lambda *_: None)
    _sync_size(manager, info.id, stdin_fd)
    tty.setraw(stdin_fd)
    try:
        _pump_stdin(manager, info.id, stdin_fd, wake_r, done)
    finally:
        termios.tcsetattr(stdin_fd, termios.TCSADRAIN, saved)
        signal.signal(signal.SIGWINCH, previous_winch)
        signal.set_wakeup_fd(previous_wakeup)
        os.close(wake_r)
        os.close(wake_w)
        manager.shutdown()

    code = manager.returncode(info.id)
    typer.echo(f"[{info.shell} exited{'' if code is None else f' with {code}'}]", err=True)


def _sync_size(manager: TerminalManager, session_id: str, stdin_fd: int) -> None:
    try:
        size = os.get_terminal_size(stdin_fd)
        manager.resize(session_id, size.columns, size.lines)
    except (OSError, TermhostError):
        pass


def _drain(fd: int) -> None:
    try:
        while os.read(fd, 512):
            pass
    except BlockingIOError:
        pass


def _pump_stdin(
    manager: TerminalManager,
    session_id: str,
    stdin_fd: int,
    wake_fd: int,
    done: threading.Event,
) -> None:
    """Copy local input to the session until it closes.

    A readable ``wake_fd`` means the local window changed size.
    """
    selector = selectors.DefaultSelector()
    selector.register(stdin_fd, selectors.EVENT_READ)
    selector.register(wake_fd, selectors.EVENT_READ)
    try:
        while not done.is_set():
            for key, _ in selector.select(timeout=0.1):
                if key.fd == wake_fd:
                    _drain(wake_fd)
                    _sync_size(manager, session_id, stdin_fd)
                    continue
                data = os.read(stdin_fd, 1024)
                if not data:
                    return
                try:
                    manager.write(session_id, data)
                except SessionNotFoundError:
                    return
    finally:
        selector.close()


@app.command()
def build(
    file: str = typer.Argument(help="Source file to compile."),
    out: str = typer.Option(..., "--out", "-o", help="Output directory."),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Compile a file with the configured toolchain and list its artifacts."""
    from termhost.workspace.build import compile_file

    setup_logging(verbose)
    config = TermhostConfig.load(config_file)
    result = asyncio.run(compile_file(file, out, compiler=config.build.compiler))

    if result.stdout:
        typer.echo(result.stdout, nl=False)
    if result.stderr:
        typer.echo(result.stderr, err=True, nl=False)
    if not result.success:
        raise typer.Exit(1)
    for ext in ("html", "js", "css"):
        status = "ok" if getattr(result, ext) is not None else "missing"
        typer.echo(f"{ext}: {status}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
