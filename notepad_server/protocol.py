from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from .errors import EnvelopeError
from .store import now_iso


class MessageType(str, Enum):
    BRIDGE_CONNECT = "bridge_connect"
    BRIDGE_DISCONNECT = "bridge_disconnect"
    FILE_CONTENT = "file_content"
    FILE_CHANGE = "file_change"
    NEW_PROMPT = "new_prompt"
    WRITE_REQUEST = "write_request"
    WRITE_RESPONSE = "write_response"
    CLEAR_REQUEST = "clear_request"
    CLEAR_RESPONSE = "clear_response"
    READ_REQUEST = "read_request"
    READ_RESPONSE = "read_response"
    PING = "ping"
    PONG = "pong"


RESPONSE_FOR = {
    MessageType.WRITE_REQUEST: MessageType.WRITE_RESPONSE,
    MessageType.CLEAR_REQUEST: MessageType.CLEAR_RESPONSE,
    MessageType.READ_REQUEST: MessageType.READ_RESPONSE,
}


@dataclass
class Envelope:
    type: MessageType
    payload: Dict[str, Any] = field(default_factory=dict)
    session_id: str = ""
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": self.payload,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
        }

    def encode(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def decode(raw: str | bytes) -> Envelope:
    """Parse one wire frame; raises EnvelopeError for anything malformed."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EnvelopeError(f"frame is not UTF-8: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise EnvelopeError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise EnvelopeError("frame must be a JSON object")

    try:
        message_type = MessageType(data.get("type"))
    except ValueError as exc:
        raise EnvelopeError(f"unknown message type: {data.get('type')!r}") from exc

    payload = data.get("payload") or {}
    if not isinstance(payload, dict):
        raise EnvelopeError("payload must be a JSON object")

    return Envelope(
        type=message_type,
        payload=payload,
        session_id=str(data.get("sessionId") or ""),
        timestamp=str(data.get("timestamp") or now_iso()),
    )
