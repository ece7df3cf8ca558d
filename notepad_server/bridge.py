#!/usr/bin/env python3
"""
Bridge between a local notepad file and a hosted relay.

Usage:
  notepad-bridge --server wss://relay.example.com/bridge
  notepad-bridge --server ws://localhost:8000/bridge --file ~/Desktop/notes.txt --poll

Watches the notepad, marks each new prompt processed and forwards it to the
relay. Answers the relay's write, clear and read requests against the file.
Reconnects after a fixed delay whenever the connection drops.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import websockets
from websockets.exceptions import WebSocketException

from .config import Settings, configure_logging
from .errors import EnvelopeError
from .protocol import Envelope, MessageType, decode
from .store import NotepadStore
from .watch import DEFAULT_POLL_INTERVAL, drain, watch_events, watch_polling

logger = logging.getLogger(__name__)


class NotepadBridge:
    def __init__(
        self,
        server_url: str,
        path: Path | str,
        store: Optional[NotepadStore] = None,
        reconnect_delay: float = 5.0,
        use_polling: bool = False,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.server_url = server_url
        self.path = Path(path).expanduser()
        self.store = store or NotepadStore()
        self.reconnect_delay = reconnect_delay
        self.use_polling = use_polling
        self.poll_interval = poll_interval
        self.session_id: Optional[str] = None
        self._ws: Any = None

    def envelope(self, message_type: MessageType, payload: Optional[Dict[str, Any]] = None) -> Envelope:
        return Envelope(type=message_type, payload=payload or {}, session_id=self.session_id or "")

    def snapshot_payload(self) -> Dict[str, Any]:
        return {"content": self.store.read_or_empty(self.path), "filePath": str(self.path)}

    def handle(self, envelope: Envelope) -> Optional[Envelope]:
        """Apply one relay message to the notepad; returns the reply, if any."""
        payload = envelope.payload
        request_id = payload.get("request_id")

        if envelope.type == MessageType.BRIDGE_CONNECT:
            self.session_id = payload.get("sessionId") or envelope.session_id
            logger.info("Session established: %s", self.session_id)
            return None

        if envelope.type == MessageType.WRITE_REQUEST:
            message = payload.get("message") or ""
            try:
                if payload.get("kind") == "wait_banner":
                    self.store.append_wait_banner(self.path, message)
                else:
                    self.store.append_agent_message(self.path, message)
            except OSError as exc:
                logger.error("Write to %s failed: %s", self.path, exc)
                return self.envelope(
                    MessageType.WRITE_RESPONSE,
                    {"success": False, "error": str(exc), "request_id": request_id},
                )
            return self.envelope(MessageType.WRITE_RESPONSE, {"success": True, "request_id": request_id})

        if envelope.type == MessageType.CLEAR_REQUEST:
            try:
                self.store.clear(self.path)
            except OSError as exc:
                logger.error("Clear of %s failed: %s", self.path, exc)
                return self.envelope(
                    MessageType.CLEAR_RESPONSE,
                    {"success": False, "error": str(exc), "request_id": request_id},
                )
            return self.envelope(MessageType.CLEAR_RESPONSE, {"success": True, "request_id": request_id})

        if envelope.type == MessageType.READ_REQUEST:
            return self.envelope(
                MessageType.READ_RESPONSE,
                {
                    "content": self.store.read_or_empty(self.path),
                    "pendingPrompts": self.store.pending(self.path),
                    "filePath": str(self.path),
                    "request_id": request_id,
                },
            )

        if envelope.type == MessageType.PING:
            return self.envelope(MessageType.PONG)

        logger.debug("Ignoring %s from relay", envelope.type.value)
        return None

    async def send(self, envelope: Envelope) -> bool:
        if self._ws is None:
            return False
        await self._ws.send(envelope.encode())
        return True

    async def forward_prompts(self, prompts: List[str]) -> None:
        for prompt in prompts:
            await self.send(self.envelope(MessageType.NEW_PROMPT, {"prompt": prompt, "filePath": str(self.path)}))
        await self.send(self.envelope(MessageType.FILE_CHANGE, self.snapshot_payload()))

    async def _watch(self) -> None:
        if self.use_polling:
            await watch_polling(self.store, self.path, self.forward_prompts, self.poll_interval)
        else:
            await watch_events(self.store, self.path, self.forward_prompts)

    async def _receive(self, ws) -> None:
        async for raw in ws:
            try:
                envelope = decode(raw)
            except EnvelopeError as exc:
                logger.warning("Dropping frame from relay: %s", exc)
                continue
            reply = self.handle(envelope)
            if reply is not None:
                await self.send(reply)

    async def serve_connection(self, ws) -> None:
        """Handshake, catch up on prompts written while offline, then relay."""
        self._ws = ws
        try:
            await self.send(self.envelope(MessageType.FILE_CONTENT, self.snapshot_payload()))
            prompts = drain(self.store, self.path)
            if prompts:
                await self.forward_prompts(prompts)

            tasks = {asyncio.create_task(self._receive(ws)), asyncio.create_task(self._watch())}
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            for task in done:
                task.result()
        finally:
            self._ws = None
            self.session_id = None

    async def run_forever(self) -> None:
        self.store.ensure_exists(self.path)
        self.store.initialize_cursor(self.path)
        logger.info("Watching file: %s", self.path)
        while True:
            try:
                async with websockets.connect(self.server_url) as ws:
                    logger.info("Connected to %s", self.server_url)
                    await self.serve_connection(ws)
                logger.info("Disconnected from server")
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                logger.warning("Connection to %s lost: %s", self.server_url, exc)
            except Exception:  # noqa: BLE001
                logger.exception("Bridge connection failed unexpectedly")
            logger.info("Reconnecting in %gs...", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Relay a local notepad file to a hosted notepad server.")
    parser.add_argument("--server", help="Relay WebSocket URL (default: $RELAY_URL)")
    parser.add_argument("--file", help="Notepad path (default: $NOTEPAD_PATH or ~/cursor-notepad.txt)")
    parser.add_argument("--poll", action="store_true", help="Poll the file instead of using change notifications.")
    parser.add_argument("--reconnect-delay", type=float)
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings.log_level)

    server_url = args.server or settings.relay_url
    if not server_url:
        print("Usage: notepad-bridge --server <wss://...> [--file <path>]", file=sys.stderr)
        return 2

    bridge = NotepadBridge(
        server_url,
        Path(args.file).expanduser() if args.file else settings.notepad_path,
        reconnect_delay=args.reconnect_delay or settings.reconnect_delay,
        use_polling=args.poll,
        poll_interval=settings.poll_interval,
    )
    try:
        asyncio.run(bridge.run_forever())
    except KeyboardInterrupt:
        logger.info("Bridge stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
