from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import NotepadNotFound
from .segmenter import PROCESSED_MARKER, extract

logger = logging.getLogger(__name__)

HEADER_TITLE = "# Agent Notepad"
HEADER_BODY = """# Write your prompts below, separated by double-enter (blank line)
# The agent will pick up each new prompt automatically
# Type "STOP" to end the session
# ============================================

"""
WAIT_BANNER = "[AGENT WAITING FOR INPUT]"
RESPONSE_HINT = "[Write your response below, then press Enter twice]"
BLANK_RUN_RE = re.compile(r"\n\s*\n+")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_header(cleared_at: str | None = None) -> str:
    title = HEADER_TITLE
    if cleared_at:
        title = f"{HEADER_TITLE} - Cleared at {cleared_at}"
    return f"{title}\n{HEADER_BODY}"


def flatten_agent_text(text: str) -> str:
    """Collapse blank lines so agent text stays inside one segment."""
    return BLANK_RUN_RE.sub("\n", text.strip("\r\n"))


def cursor_from_content(content: str) -> int:
    """Offset just past the last processed marker, or the end of the text."""
    index = content.rfind(PROCESSED_MARKER)
    if index >= 0:
        return index + len(PROCESSED_MARKER)
    return len(content)


class NotepadStore:
    """
    Owns notepad files and the consumed-offset cursor for each of them.

    The cursor only moves forward through ``mark_processed``; ``clear``
    resets it to the end of the fresh header. Appending agent text never
    moves it, so a prompt typed before an agent message is still picked up.
    """

    def __init__(self) -> None:
        self._cursors: Dict[Path, int] = {}

    @staticmethod
    def _key(path: Path | str) -> Path:
        return Path(path).expanduser()

    def ensure_exists(self, path: Path | str) -> Path:
        target = self._key(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if not target.exists():
            target.write_text(build_header(), encoding="utf-8")
            logger.info("Created notepad at %s", target)
        return target

    def initialize_cursor(self, path: Path | str) -> int:
        key = self._key(path)
        if key not in self._cursors:
            content = key.read_text(encoding="utf-8") if key.exists() else ""
            self._cursors[key] = cursor_from_content(content)
        return self._cursors[key]

    def cursor(self, path: Path | str) -> int:
        return self.initialize_cursor(path)

    def read(self, path: Path | str) -> str:
        key = self._key(path)
        if not key.exists():
            raise NotepadNotFound(key)
        return key.read_text(encoding="utf-8")

    def read_or_empty(self, path: Path | str) -> str:
        try:
            return self.read(path)
        except NotepadNotFound:
            return ""

    def append(self, path: Path | str, text: str) -> None:
        key = self._key(path)
        with key.open("a", encoding="utf-8") as handle:
            handle.write(text)

    def append_agent_message(self, path: Path | str, message: str) -> None:
        self.append(path, f"\n[AGENT MESSAGE - {now_iso()}]\n{flatten_agent_text(message)}\n\n")

    def append_wait_banner(self, path: Path | str, message: Optional[str] = None) -> None:
        lines = [WAIT_BANNER]
        message = flatten_agent_text(message or "")
        if message:
            lines.append(message)
        lines.append(RESPONSE_HINT)
        self.append(path, "\n" + "\n".join(lines) + "\n\n")

    def mark_processed(self, path: Path | str) -> int:
        key = self._key(path)
        self.append(key, f"\n{PROCESSED_MARKER}\n")
        cursor = cursor_from_content(key.read_text(encoding="utf-8"))
        previous = self._cursors.get(key, 0)
        # Only the human may rewrite earlier bytes; keep the cursor monotonic.
        self._cursors[key] = max(cursor, previous)
        return self._cursors[key]

    def clear(self, path: Path | str) -> int:
        key = self._key(path)
        key.parent.mkdir(parents=True, exist_ok=True)
        header = build_header(cleared_at=now_iso())
        key.write_text(header, encoding="utf-8")
        self._cursors[key] = len(header)
        logger.info("Cleared notepad at %s", key)
        return self._cursors[key]

    def snapshot(self, path: Path | str) -> Tuple[str, int]:
        """Current content and cursor; re-derive the cursor if the file shrank."""
        key = self._key(path)
        content = self.read_or_empty(key)
        cursor = self.cursor(key)
        if cursor > len(content):
            cursor = cursor_from_content(content)
            logger.warning("Notepad %s shrank below its cursor; resyncing to %d", key, cursor)
            self._cursors[key] = cursor
        return content, cursor

    def pending(self, path: Path | str) -> List[str]:
        content, cursor = self.snapshot(path)
        return extract(content, cursor)
