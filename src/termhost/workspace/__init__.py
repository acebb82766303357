"""Workspace collaborators: file operations and the compiler bridge."""

from termhost.workspace.build import BuildResult, compile_file
from termhost.workspace.files import FileEntry

__all__ = [
    "BuildResult",
    "FileEntry",
    "compile_file",
]
