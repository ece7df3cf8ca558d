from __future__ import annotations

from fastmcp import FastMCP

from ..backends import NotepadBackend
from . import editing, watching


def register_tools(mcp: FastMCP, backend: NotepadBackend) -> None:
    """Register all notepad tools with the server."""
    for module in (
        watching,
        editing,
    ):
        module.register(mcp, backend)
