"""Stdio server: exposes terminals, files and builds over JSON lines.

One request per stdin line; responses and event notifications are written
to stdout, one JSON object per line. Logging goes to stderr.

Requests run concurrently, except that terminal operations on the same
session are applied in arrival order, so keystrokes are never reordered.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable
from contextlib import AbstractAsyncContextManager, nullcontext
from typing import Any, BinaryIO, Callable

from pydantic import BaseModel, ValidationError

from termhost.config import TermhostConfig
from termhost.errors import (
    FileOperationError,
    ResourceError,
    SessionNotFoundError,
    TerminalIOError,
)
from termhost.events.wire import EventType, Wire
from termhost.pty.manager import TerminalManager
from termhost.server.protocol import (
    CompileParams,
    ErrorCode,
    NoParams,
    PathParams,
    RenameParams,
    Request,
    ResizeParams,
    SessionParams,
    SpawnParams,
    WriteFileParams,
    WriteParams,
    error,
    event_message,
    ok,
)
from termhost.workspace import files
from termhost.workspace.build import compile_file

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


class StdioServer:
    """Routes protocol requests to the terminal manager and workspace layers."""

    def __init__(self, manager: TerminalManager, config: TermhostConfig | None = None) -> None:
        self._manager = manager
        self._config = config or TermhostConfig()
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._methods: dict[str, tuple[type[BaseModel], Handler]] = {
            "terminal.spawn": (SpawnParams, self._spawn),
            "terminal.write": (WriteParams, self._write),
            "terminal.resize": (ResizeParams, self._resize),
            "terminal.close": (SessionParams, self._close),
            "terminal.list": (NoParams, self._list),
            "fs.list_dir": (PathParams, self._list_dir),
            "fs.read_file": (PathParams, self._read_file),
            "fs.write_file": (WriteFileParams, self._write_file),
            "fs.create_file": (PathParams, self._create_file),
            "fs.create_dir": (PathParams, self._create_dir),
            "fs.delete": (PathParams, self._delete),
            "fs.rename": (RenameParams, self._rename),
            "build.compile": (CompileParams, self._compile),
        }

    async def handle_line(self, line: str | bytes) -> dict[str, Any]:
        """Parse and execute one request line. Never raises."""
        try:
            raw = json.loads(line)
        except ValueError as e:
            # JSONDecodeError or UnicodeDecodeError on a non-UTF-8 line
            return error(None, ErrorCode.INVALID_PARAMS, f"Malformed request: {e}")
        try:
            request = Request.model_validate(raw)
        except ValidationError as e:
            request_id = raw.get("id") if isinstance(raw, dict) else None
            return error(request_id, ErrorCode.INVALID_PARAMS, f"Invalid request: {e}")
        return await self.handle(request)

    async def handle(self, request: Request) -> dict[str, Any]:
        """Execute a validated request and build its response."""
        route = self._methods.get(request.method)
        if route is None:
            return error(
                request.id, ErrorCode.UNKNOWN_METHOD, f"Unknown method: {request.method}"
            )
        param_model, handler = route

        try:
            params = param_model.model_validate(request.params)
        except ValidationError as e:
            return error(request.id, ErrorCode.INVALID_PARAMS, f"Invalid parameters: {e}")

        try:
            return ok(request.id, await handler(params))
        except SessionNotFoundError as e:
            self.forget_session(e.session_id)
            return error(request.id, ErrorCode.NOT_FOUND, str(e))
        except TerminalIOError as e:
            return error(request.id, ErrorCode.IO_FAILURE, str(e))
        except ResourceError as e:
            return error(request.id, ErrorCode.RESOURCE, str(e))
        except FileOperationError as e:
            return error(request.id, ErrorCode.FS_ERROR, str(e))
        except ValueError as e:
            return error(request.id, ErrorCode.INVALID_PARAMS, str(e))
        except Exception as e:
            logger.error("Request %s failed: %s", request.method, e, exc_info=True)
            return error(request.id, ErrorCode.INTERNAL, f"Error executing {request.method}: {e}")

    def forget_session(self, session_id: str) -> None:
        """Drop per-session ordering state once a session has closed."""
        self._session_locks.pop(session_id, None)

    # ------------------------------------------------------------------
    # terminal.*
    # ------------------------------------------------------------------

    async def _spawn(self, params: SpawnParams) -> dict[str, str]:
        info = await asyncio.to_thread(self._manager.spawn, params.shell, params.cwd)
        # No lock for a shell that is already unregistered; nothing would drop it.
        if info.id in self._manager.list_ids():
            self._session_locks[info.id] = asyncio.Lock()
        return {"id": info.id, "shell": info.shell}

    async def _write(self, params: WriteParams) -> None:
        async with self._lock_for(params.id):
            await asyncio.to_thread(self._manager.write, params.id, params.data)

    async def _resize(self, params: ResizeParams) -> None:
        async with self._lock_for(params.id):
            await asyncio.to_thread(
                self._manager.resize, params.id, params.cols, params.rows
            )

    async def _close(self, params: SessionParams) -> None:
        async with self._lock_for(params.id):
            self._manager.close(params.id)
        self.forget_session(params.id)

    async def _list(self, params: NoParams) -> list[str]:
        return self._manager.list_ids()

    def _lock_for(self, session_id: str) -> AbstractAsyncContextManager:
        # Only spawned sessions get a lock; unknown ids fail in the manager.
        return self._session_locks.get(session_id) or nullcontext()

    # ------------------------------------------------------------------
    # fs.* / build.*
    # ------------------------------------------------------------------

    async def _list_dir(self, params: PathParams) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in await files.list_dir(params.path)]

    async def _read_file(self, params: PathParams) -> str:
        return await files.read_file(params.path)

    async def _write_file(self, params: WriteFileParams) -> None:
        await files.write_file(params.path, params.content)

    async def _create_file(self, params: PathParams) -> None:
        await files.create_file(params.path)

    async def _create_dir(self, params: PathParams) -> None:
        await files.create_dir(params.path)

    async def _delete(self, params: PathParams) -> None:
        await files.delete(params.path)

    async def _rename(self, params: RenameParams) -> None:
        await files.rename(params.old_path, params.new_path)

    async def _compile(self, params: CompileParams) -> dict[str, Any]:
        result = await compile_file(
            params.file_path, params.output_dir, compiler=self._config.build.compiler
        )
        return result.to_dict()


class _LineWriter:
    """Serializes JSON lines onto a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._lock = asyncio.Lock()

    async def write(self, message: dict[str, Any]) -> None:
        line = json.dumps(message, ensure_ascii=False, separators=(",", ":")) + "\n"
        async with self._lock:
            self._stream.write(line.encode("utf-8"))
            self._stream.flush()


async def serve(
    config: TermhostConfig | None = None,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> None:
    """Run the stdio server until stdin reaches EOF."""
    config = config or TermhostConfig()
    stdin = stdin or sys.stdin.buffer
    out = _LineWriter(stdout or sys.stdout.buffer)

    wire = Wire()
    events = wire.subscribe()
    manager = TerminalManager(sink=wire, config=config.terminal)
    server = StdioServer(manager, config)
    pending: set[asyncio.Task] = set()

    async def pump_events() -> None:
        while True:
            event = await events.get()
            if event is None:
                break
            await out.write(event_message(event))
            if event.type == EventType.CLOSED:
                server.forget_session(event.session_id)

    async def respond(line: bytes) -> None:
        await out.write(await server.handle_line(line))

    pump = asyncio.create_task(pump_events())
    logger.info("termhost server ready")
    try:
        while True:
            line = await asyncio.to_thread(stdin.readline)
            if not line:
                break
            if not line.strip():
                continue
            task = asyncio.create_task(respond(line))
            pending.add(task)
            task.add_done_callback(pending.discard)
        if pending:
            await asyncio.gather(*pending)
    finally:
        await asyncio.to_thread(manager.shutdown)
        wire.close()
        await pump
        logger.info("termhost server stopped")
