from __future__ import annotations

import logging
import time
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, Optional

from .protocol import MessageType
from .segmenter import is_stop
from .sessions import DISCONNECTED, SessionRegistry
from .store import NotepadStore, now_iso
from .watch import DEFAULT_POLL_INTERVAL, drain, poll_for_prompts

logger = logging.getLogger(__name__)

RECEIVED_INSTRUCTION = "Process this human input as a new prompt continuing the conversation"
RETRY_INSTRUCTION = (
    "IMPORTANT: Call watch_notepad again immediately to continue the loop. "
    "The user may still be typing."
)


def prompt_result(prompt: str, file_path: Optional[str]) -> Dict[str, Any]:
    if is_stop(prompt):
        return {
            "status": "stopped",
            "message": "User requested to stop the session",
            "file_path": file_path,
        }
    return {
        "status": "received",
        "human_input": prompt,
        "file_path": file_path,
        "timestamp": now_iso(),
        "instruction": RECEIVED_INSTRUCTION,
    }


def waiting_result(timeout_seconds: float, file_path: Optional[str], elapsed: float) -> Dict[str, Any]:
    return {
        "status": "waiting",
        "message": (
            f"No input received within {timeout_seconds:g} seconds. "
            "Call watch_notepad again to continue waiting."
        ),
        "file_path": file_path,
        "elapsed_seconds": int(elapsed),
        "instruction": RETRY_INSTRUCTION,
    }


def error_result(message: str) -> Dict[str, Any]:
    return {"status": "error", "error": message}


class NotepadBackend:
    """Implements the four notepad tools for one deployment mode."""

    async def watch(self, timeout_seconds: float, message_to_user: Optional[str] = None) -> Dict[str, Any]:
        raise NotImplementedError

    async def write(self, message: str) -> Dict[str, Any]:
        raise NotImplementedError

    async def clear(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def read(self) -> Dict[str, Any]:
        raise NotImplementedError


class LocalBackend(NotepadBackend):
    """Reads the notepad directly and polls it while a watch is pending."""

    def __init__(
        self,
        path: Path | str,
        store: Optional[NotepadStore] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.path = Path(path).expanduser()
        self.store = store or NotepadStore()
        self.poll_interval = poll_interval
        # Prompts consumed from the file in one pass but not yet handed out.
        self._buffered: Deque[str] = deque()

    async def watch(self, timeout_seconds: float, message_to_user: Optional[str] = None) -> Dict[str, Any]:
        self.store.ensure_exists(self.path)
        self.store.initialize_cursor(self.path)
        if not self._buffered:
            self._buffered.extend(drain(self.store, self.path))

        if not self._buffered:
            self.store.append_wait_banner(self.path, message_to_user)
            logger.info("Waiting for input in %s (timeout %ss)", self.path, timeout_seconds or "none")
            started = time.monotonic()
            self._buffered.extend(
                await poll_for_prompts(self.store, self.path, timeout_seconds, self.poll_interval)
            )
            if not self._buffered:
                return waiting_result(timeout_seconds, str(self.path), time.monotonic() - started)

        return prompt_result(self._buffered.popleft(), str(self.path))

    async def write(self, message: str) -> Dict[str, Any]:
        self.store.ensure_exists(self.path)
        self.store.append_agent_message(self.path, message)
        return {"status": "written", "file_path": str(self.path)}

    async def clear(self) -> Dict[str, Any]:
        self.store.clear(self.path)
        self._buffered.clear()
        return {"status": "cleared", "file_path": str(self.path)}

    async def read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"status": "not_found", "file_path": str(self.path)}
        content = self.store.read(self.path)
        pending = list(self._buffered) + self.store.pending(self.path)
        return {
            "status": "read",
            "content": content,
            "pending_prompts": pending,
            "file_path": str(self.path),
        }


class RelayBackend(NotepadBackend):
    """Serves the tools from prompts relayed by a connected bridge."""

    def __init__(self, registry: SessionRegistry, request_timeout: float = 5.0) -> None:
        self.registry = registry
        self.request_timeout = request_timeout

    @staticmethod
    def _no_bridge() -> Dict[str, Any]:
        return {
            "status": "no_bridge",
            "message": "No bridge client connected. Please ensure the bridge is running.",
        }

    async def watch(self, timeout_seconds: float, message_to_user: Optional[str] = None) -> Dict[str, Any]:
        session = self.registry.get_active_session()
        if session is None:
            return self._no_bridge()

        if message_to_user:
            await self.registry.send(
                session,
                MessageType.WRITE_REQUEST,
                {"message": message_to_user, "kind": "wait_banner"},
            )

        started = time.monotonic()
        outcome = await self.registry.wait_for_prompt(session, timeout_seconds)
        if outcome is DISCONNECTED:
            result = waiting_result(timeout_seconds, session.file_path, time.monotonic() - started)
            result["message"] = "The bridge disconnected while waiting. Call watch_notepad again once it reconnects."
            result["disconnected"] = True
            return result
        if outcome is None:
            return waiting_result(timeout_seconds, session.file_path, time.monotonic() - started)
        return prompt_result(outcome, session.file_path)

    async def write(self, message: str) -> Dict[str, Any]:
        session = self.registry.get_active_session()
        if session is None:
            return self._no_bridge()
        response = await self.registry.request(
            session,
            MessageType.WRITE_REQUEST,
            {"message": message, "kind": "message"},
            timeout=self.request_timeout,
        )
        if response is None:
            return error_result("Bridge did not confirm the write")
        if not response.get("success"):
            return error_result(response.get("error") or "Bridge failed to write the message")
        return {"status": "written", "file_path": session.file_path}

    async def clear(self) -> Dict[str, Any]:
        session = self.registry.get_active_session()
        if session is None:
            return self._no_bridge()
        response = await self.registry.request(session, MessageType.CLEAR_REQUEST, timeout=self.request_timeout)
        if response is None:
            return error_result("Bridge did not confirm the clear")
        if not response.get("success"):
            return error_result(response.get("error") or "Bridge failed to clear the notepad")
        session.pending.clear()
        return {"status": "cleared", "file_path": session.file_path}

    async def read(self) -> Dict[str, Any]:
        session = self.registry.get_active_session()
        if session is None:
            return self._no_bridge()
        response = await self.registry.request(session, MessageType.READ_REQUEST, timeout=self.request_timeout)
        return {
            "status": "read",
            "content": session.content,
            "pending_prompts": list(session.pending),
            "file_path": session.file_path,
            "source": "bridge" if response is not None else "snapshot",
        }
