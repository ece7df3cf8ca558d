from __future__ import annotations

import logging

from fastmcp import FastMCP

from ..backends import NotepadBackend, error_result
from ..config import DEFAULT_WATCH_TIMEOUT

logger = logging.getLogger(__name__)


def register(mcp: FastMCP, backend: NotepadBackend) -> None:
    @mcp.tool(name="watch_notepad")
    async def watch_notepad(
        timeout_seconds: float = DEFAULT_WATCH_TIMEOUT,
        message_to_user: str | None = None,
    ) -> dict:
        """
        Wait for the human to write a new prompt in the notepad file.

        The user writes in the notepad and presses Enter twice (leaving a blank
        line) to submit. Use this to let the human guide the conversation
        mid-task, or to wait for a decision. If the user types "STOP" the
        result status is "stopped" and the loop should end.

        Args:
            timeout_seconds: Maximum seconds to wait. 0 waits indefinitely. Default 300.
            message_to_user: Optional note shown in the notepad about the input you expect.

        Returns:
            status "received" with human_input, "stopped", "waiting" (call again),
            "no_bridge" (relay without a connected bridge) or "error".
        """
        if timeout_seconds is None or timeout_seconds < 0:
            return error_result("timeout_seconds must be a number >= 0")
        try:
            return await backend.watch(timeout_seconds, message_to_user)
        except Exception as exc:  # noqa: BLE001
            logger.exception("watch_notepad failed")
            return error_result(str(exc))
