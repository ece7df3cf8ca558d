from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from .protocol import Envelope, MessageType, RESPONSE_FOR

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_REQUEST_TIMEOUT = 5.0

Sender = Callable[[Envelope], Awaitable[None]]


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class WaitOutcome(Enum):
    DISCONNECTED = "disconnected"


DISCONNECTED = WaitOutcome.DISCONNECTED

PromptResult = Union[str, None, WaitOutcome]


class PromptWaiter:
    """
    One suspended ``watch_notepad`` call.

    Moves idle -> waiting -> resolved. ``settle`` succeeds once; later
    calls (a late timer, a prompt racing a disconnect) are no-ops.
    """

    def __init__(self) -> None:
        self.state = "idle"
        self.future: Optional[asyncio.Future] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    def start(self, loop: asyncio.AbstractEventLoop) -> asyncio.Future:
        self.future = loop.create_future()
        self.state = "waiting"
        return self.future

    def arm_timer(self, loop: asyncio.AbstractEventLoop, timeout: float, callback: Callable[[], Any]) -> None:
        self._timer = loop.call_later(timeout, callback)

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def settle(self, outcome: PromptResult) -> bool:
        if self.state != "waiting" or self.future is None or self.future.done():
            return False
        self.cancel_timer()
        self.state = "resolved"
        self.future.set_result(outcome)
        return True


@dataclass
class BridgeSession:
    id: str
    send: Sender
    file_path: Optional[str] = None
    content: str = ""
    state: SessionState = SessionState.CONNECTING
    last_seen: float = field(default_factory=time.time)
    pending: Deque[str] = field(default_factory=deque)
    waiter: Optional[PromptWaiter] = None
    requests: Dict[str, asyncio.Future] = field(default_factory=dict)

    @property
    def connected(self) -> bool:
        return self.state == SessionState.OPEN


class SessionRegistry:
    """Relay-side record of every connected bridge."""

    def __init__(self, heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL) -> None:
        self.heartbeat_interval = heartbeat_interval
        self._sessions: Dict[str, BridgeSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def sessions(self) -> List[BridgeSession]:
        return list(self._sessions.values())

    def get(self, session_id: str) -> Optional[BridgeSession]:
        return self._sessions.get(session_id)

    def open_session(self, send: Sender) -> BridgeSession:
        session = BridgeSession(id=uuid.uuid4().hex[:12], send=send)
        self._sessions[session.id] = session
        session.state = SessionState.OPEN
        logger.info("Bridge session %s opened", session.id)
        return session

    def close_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.state = SessionState.CLOSED
        if session.waiter is not None:
            self._release(session, session.waiter, DISCONNECTED)
        for future in session.requests.values():
            if not future.done():
                future.set_result(None)
        session.requests.clear()
        logger.info("Bridge session %s closed", session_id)

    def get_active_session(self) -> Optional[BridgeSession]:
        """The earliest registered session that is still open."""
        for session in self._sessions.values():
            if session.connected:
                return session
        return None

    def record_prompt(self, session: BridgeSession, text: str) -> bool:
        """Hand ``text`` to the waiting call; queue it when nobody waits."""
        waiter = session.waiter
        if waiter is not None and self._release(session, waiter, text):
            logger.info("Delivered prompt to waiting call on session %s", session.id)
            return True
        session.pending.append(text)
        logger.info("Queued prompt on session %s (%d pending)", session.id, len(session.pending))
        return False

    def record_file_snapshot(self, session: BridgeSession, path: Optional[str], content: Optional[str]) -> None:
        if path:
            session.file_path = path
        if content is not None:
            session.content = content

    def dispatch(self, session: BridgeSession, envelope: Envelope) -> None:
        """Apply one inbound frame from the bridge."""
        session.last_seen = time.time()
        payload = envelope.payload

        if envelope.type in (MessageType.FILE_CONTENT, MessageType.FILE_CHANGE):
            self.record_file_snapshot(session, payload.get("filePath"), payload.get("content"))
        elif envelope.type == MessageType.NEW_PROMPT:
            prompt = payload.get("prompt")
            if not isinstance(prompt, str) or not prompt.strip():
                logger.warning("Dropping empty prompt from session %s", session.id)
                return
            self.record_file_snapshot(session, payload.get("filePath"), None)
            self.record_prompt(session, prompt)
        elif envelope.type in RESPONSE_FOR.values():
            if envelope.type == MessageType.READ_RESPONSE and isinstance(payload.get("content"), str):
                session.content = payload["content"]
            future = session.requests.get(str(payload.get("request_id")))
            if future is not None and not future.done():
                future.set_result(payload)
            elif envelope.type == MessageType.WRITE_RESPONSE and not payload.get("success", True):
                logger.warning("Bridge write failed: %s", payload.get("error"))
        elif envelope.type == MessageType.PONG:
            pass
        else:
            logger.debug("Ignoring %s from session %s", envelope.type.value, session.id)

    def _release(self, session: BridgeSession, waiter: PromptWaiter, outcome: PromptResult) -> bool:
        if session.waiter is waiter:
            session.waiter = None
        return waiter.settle(outcome)

    async def wait_for_prompt(self, session: BridgeSession, timeout: Optional[float]) -> PromptResult:
        """
        Next prompt for ``session``: a string, None on timeout, or DISCONNECTED.

        Queued prompts are returned immediately in FIFO order. A timeout of 0
        or None waits until a prompt arrives or the bridge goes away. A second
        wait on the same session replaces the first, which resolves to None.
        """
        if session.pending:
            return session.pending.popleft()
        if not session.connected:
            return DISCONNECTED

        if session.waiter is not None:
            logger.warning("Replacing outstanding wait on session %s", session.id)
            self._release(session, session.waiter, None)

        loop = asyncio.get_running_loop()
        waiter = PromptWaiter()
        future = waiter.start(loop)
        session.waiter = waiter
        if timeout:
            waiter.arm_timer(loop, timeout, lambda: self._release(session, waiter, None))
        try:
            return await future
        finally:
            waiter.cancel_timer()
            if session.waiter is waiter:
                session.waiter = None

    async def send(
        self,
        session: BridgeSession,
        message_type: MessageType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if not session.connected:
            return False
        envelope = Envelope(type=message_type, payload=payload or {}, session_id=session.id)
        try:
            await session.send(envelope)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Send %s to session %s failed: %s", message_type.value, session.id, exc)
            return False
        return True

    async def request(
        self,
        session: BridgeSession,
        message_type: MessageType,
        payload: Optional[Dict[str, Any]] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> Optional[Dict[str, Any]]:
        """Send a bridge request and wait for its response payload."""
        if message_type not in RESPONSE_FOR:
            raise ValueError(f"{message_type.value} is not a request type")
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        session.requests[request_id] = future
        try:
            body = dict(payload or {}, request_id=request_id)
            if not await self.send(session, message_type, body):
                return None
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.warning("No %s from session %s within %ss", RESPONSE_FOR[message_type].value, session.id, timeout)
            return None
        finally:
            session.requests.pop(request_id, None)

    async def heartbeat_once(self) -> int:
        sent = 0
        for session in self.sessions():
            if session.connected and await self.send(session, MessageType.PING):
                sent += 1
        return sent

    async def run_heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self.heartbeat_once()
