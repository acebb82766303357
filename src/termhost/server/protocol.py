"""Stdio protocol: JSON-lines request, response and notification shapes.

Requests:       {"id": 1, "method": "terminal.write", "params": {...}}
Responses:      {"id": 1, "result": ...} | {"id": 1, "error": {"code", "message"}}
Notifications:  {"event": "terminal.output", "params": {"id", "data"}}

Byte payloads (terminal input and output) travel as base64 strings.
"""

from __future__ import annotations

import base64
import enum
from typing import Any

from pydantic import Base64Bytes, BaseModel, Field

from termhost.events.wire import EventType, WireEvent


class ErrorCode(enum.Enum):
    NOT_FOUND = "not_found"
    IO_FAILURE = "io_failure"
    RESOURCE = "resource"
    FS_ERROR = "fs_error"
    INVALID_PARAMS = "invalid_params"
    UNKNOWN_METHOD = "unknown_method"
    INTERNAL = "internal"


class Request(BaseModel):
    id: int | str | None = None
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# terminal.*
# ---------------------------------------------------------------------------


class SpawnParams(BaseModel):
    shell: str | None = Field(default=None, description="Shell executable path.")
    cwd: str | None = Field(default=None, description="Working directory.")


class WriteParams(BaseModel):
    id: str
    data: Base64Bytes = Field(description="Base64-encoded input bytes.")


class ResizeParams(BaseModel):
    id: str
    cols: int = Field(ge=0, le=65535)
    rows: int = Field(ge=0, le=65535)


class SessionParams(BaseModel):
    id: str


# ---------------------------------------------------------------------------
# fs.* / build.*
# ---------------------------------------------------------------------------


class PathParams(BaseModel):
    path: str


class WriteFileParams(BaseModel):
    path: str
    content: str


class RenameParams(BaseModel):
    old_path: str
    new_path: str


class CompileParams(BaseModel):
    file_path: str
    output_dir: str


class NoParams(BaseModel):
    pass


def ok(request_id: int | str | None, result: Any = None) -> dict[str, Any]:
    return {"id": request_id, "result": result}


def error(request_id: int | str | None, code: ErrorCode, message: str) -> dict[str, Any]:
    return {"id": request_id, "error": {"code": code.value, "message": message}}


def event_message(event: WireEvent) -> dict[str, Any]:
    """Render a wire event as a notification line."""
    params: dict[str, Any] = {"id": event.session_id}
    if event.type == EventType.OUTPUT:
        params["data"] = base64.b64encode(event.data["data"]).decode("ascii")
    return {"event": f"terminal.{event.type.value}", "params": params}
