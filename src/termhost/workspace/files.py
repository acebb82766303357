"""File layer: thin async wrappers over disk operations.

Shares nothing with the terminal registry. Every failure is raised as
:class:`~termhost.errors.FileOperationError` with a readable message.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import asdict, dataclass
from typing import Any

import aiofiles
import aiofiles.os

from termhost.errors import FileOperationError


@dataclass
class FileEntry:
    """One directory listing entry."""

    name: str
    path: str
    is_dir: bool
    is_file: bool
    extension: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


async def list_dir(path: str) -> list[FileEntry]:
    """List a directory: directories first, then files, each case-insensitively."""
    if not await aiofiles.os.path.exists(path):
        raise FileOperationError(f"Directory does not exist: {path}")
    if not await aiofiles.os.path.isdir(path):
        raise FileOperationError(f"Path is not a directory: {path}")

    try:
        names = await aiofiles.os.listdir(path)
    except OSError as e:
        raise FileOperationError(f"Failed to read directory: {e}") from e

    entries = []
    for name in names:
        full = os.path.join(path, name)
        ext = os.path.splitext(name)[1]
        entries.append(
            FileEntry(
                name=name,
                path=full,
                is_dir=await aiofiles.os.path.isdir(full),
                is_file=await aiofiles.os.path.isfile(full),
                # ".bashrc" has no extension, "a.tar.gz" has "gz"
                extension=ext[1:] if ext else None,
            )
        )

    entries.sort(key=lambda e: (not e.is_dir, e.name.lower()))
    return entries


async def read_file(path: str) -> str:
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise FileOperationError(f"Failed to read file: {e}") from e


async def write_file(path: str, content: str) -> None:
    try:
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)
    except OSError as e:
        raise FileOperationError(f"Failed to write file: {e}") from e


async def create_file(path: str) -> None:
    """Create an empty file, truncating any existing one."""
    try:
        async with aiofiles.open(path, "w", encoding="utf-8"):
            pass
    except OSError as e:
        raise FileOperationError(f"Failed to create file: {e}") from e


async def create_dir(path: str) -> None:
    """Create a directory and any missing parents."""
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise FileOperationError(f"Failed to create directory: {e}") from e


async def delete(path: str) -> None:
    """Delete a file, or a directory recursively."""
    if await aiofiles.os.path.isdir(path):
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except OSError as e:
            raise FileOperationError(f"Failed to delete directory: {e}") from e
        return
    try:
        await aiofiles.os.remove(path)
    except OSError as e:
        raise FileOperationError(f"Failed to delete file: {e}") from e


async def rename(old_path: str, new_path: str) -> None:
    try:
        await aiofiles.os.rename(old_path, new_path)
    except OSError as e:
        raise FileOperationError(f"Failed to rename: {e}") from e
