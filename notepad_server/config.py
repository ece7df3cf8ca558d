from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_NOTEPAD_NAME = "cursor-notepad.txt"
DEFAULT_WATCH_TIMEOUT = 300.0


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def default_notepad_path() -> Path:
    explicit = os.getenv("NOTEPAD_PATH")
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / DEFAULT_NOTEPAD_NAME


@dataclass
class Settings:
    notepad_path: Path
    relay_url: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000
    poll_interval: float = 0.5
    heartbeat_interval: float = 30.0
    reconnect_delay: float = 5.0
    request_timeout: float = 5.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        if load_dotenv_file:
            load_dotenv()
        return cls(
            notepad_path=default_notepad_path(),
            relay_url=os.getenv("RELAY_URL") or None,
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            poll_interval=_float_env("NOTEPAD_POLL_INTERVAL", 0.5),
            heartbeat_interval=_float_env("NOTEPAD_HEARTBEAT_INTERVAL", 30.0),
            reconnect_delay=_float_env("NOTEPAD_RECONNECT_DELAY", 5.0),
            request_timeout=_float_env("NOTEPAD_REQUEST_TIMEOUT", 5.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    # stdout carries the stdio MCP transport, so logs go to stderr.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
