from __future__ import annotations

import logging

from fastmcp import FastMCP

from ..backends import NotepadBackend, error_result

logger = logging.getLogger(__name__)


def register(mcp: FastMCP, backend: NotepadBackend) -> None:
    @mcp.tool(name="write_to_notepad")
    async def write_to_notepad(message: str | None = None) -> dict:
        """Write a message to the notepad (agent-to-human communication)."""
        if not message or not message.strip():
            return error_result("Message is required")
        try:
            return await backend.write(message)
        except Exception as exc:  # noqa: BLE001
            logger.exception("write_to_notepad failed")
            return error_result(str(exc))

    @mcp.tool(name="clear_notepad")
    async def clear_notepad() -> dict:
        """Clear the notepad and reset the watch state. Undelivered prompts are dropped."""
        try:
            return await backend.clear()
        except Exception as exc:  # noqa: BLE001
            logger.exception("clear_notepad failed")
            return error_result(str(exc))

    @mcp.tool(name="read_notepad")
    async def read_notepad() -> dict:
        """Read the notepad contents and any prompts not yet consumed, without waiting."""
        try:
            return await backend.read()
        except Exception as exc:  # noqa: BLE001
            logger.exception("read_notepad failed")
            return error_result(str(exc))
