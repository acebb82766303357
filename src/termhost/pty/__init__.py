"""Terminal session management: PTY-backed shells with streamed output.

Each session runs a shell on its own pseudo-terminal. A reader thread per
session forwards raw output bytes through a bounded channel to an event
sink; a supervisor reaps every shell.
"""

from termhost.pty.factory import PseudoterminalFactory
from termhost.pty.manager import TerminalInfo, TerminalManager
from termhost.pty.registry import SessionRegistry
from termhost.pty.session import TerminalSession, TerminalStatus

__all__ = [
    "PseudoterminalFactory",
    "SessionRegistry",
    "TerminalInfo",
    "TerminalManager",
    "TerminalSession",
    "TerminalStatus",
]
