from __future__ import annotations

import logging

from starlette.websockets import WebSocket, WebSocketDisconnect

from .errors import EnvelopeError
from .protocol import Envelope, MessageType, decode
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

BRIDGE_PATH = "/bridge"


def make_bridge_endpoint(registry: SessionRegistry):
    """Build the WebSocket handler that turns each bridge connection into a session."""

    async def bridge_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()

        async def send(envelope: Envelope) -> None:
            await websocket.send_text(envelope.encode())

        session = registry.open_session(send)
        try:
            await registry.send(session, MessageType.BRIDGE_CONNECT, {"sessionId": session.id})
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                try:
                    envelope = decode(raw)
                except EnvelopeError as exc:
                    logger.warning("Dropping frame from session %s: %s", session.id, exc)
                    continue
                if envelope.type == MessageType.BRIDGE_DISCONNECT:
                    logger.info("Bridge session %s said goodbye", session.id)
                    await websocket.close()
                    break
                registry.dispatch(session, envelope)
        except WebSocketDisconnect as exc:
            logger.info("Bridge session %s disconnected (code %s)", session.id, exc.code)
        finally:
            registry.close_session(session.id)

    return bridge_endpoint
