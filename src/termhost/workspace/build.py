"""Build layer: run the external compiler and collect its artifacts."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import asdict, dataclass
from typing import Any

import aiofiles

logger = logging.getLogger(__name__)

_ARTIFACTS = ("html", "js", "css")


@dataclass
class BuildResult:
    """Outcome of a compiler run.

    ``html``/``js``/``css`` are only populated on success, and only for the
    artifacts that actually exist.
    """

    success: bool
    stdout: str = ""
    stderr: str = ""
    html: str | None = None
    js: str | None = None
    css: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


async def compile_file(
    file_path: str, output_dir: str, compiler: str = "flux"
) -> BuildResult:
    """Run ``<compiler> build <file_path> -o <output_dir>``.

    Never raises for compiler problems: a missing executable or a failed
    build is reported through ``success``/``stderr``.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            compiler,
            "build",
            file_path,
            "-o",
            output_dir,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as e:
        logger.warning("Compiler %s could not be started: %s", compiler, e)
        return BuildResult(
            success=False,
            stderr=(
                f"Failed to run {compiler} compiler: {e}. "
                f"Make sure {compiler} is installed and in your PATH."
            ),
        )

    result = BuildResult(
        success=process.returncode == 0,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    logger.info("Built %s (exit=%s)", file_path, process.returncode)

    if result.success:
        base_name = os.path.splitext(os.path.basename(file_path))[0] or "output"
        for ext in _ARTIFACTS:
            artifact = os.path.join(output_dir, f"{base_name}.{ext}")
            setattr(result, ext, await _read_optional(artifact))
    return result


async def _read_optional(path: str) -> str | None:
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()
    except (OSError, UnicodeDecodeError):
        return None
