"""Stdio server: JSON-lines front end for terminals, files and builds."""

from termhost.server.stdio import StdioServer, serve

__all__ = ["StdioServer", "serve"]
