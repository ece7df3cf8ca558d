from __future__ import annotations

import json

import pytest

from notepad_server.errors import EnvelopeError
from notepad_server.protocol import Envelope, MessageType, decode


def test_envelope_wire_format_uses_camel_case_session_id():
    envelope = Envelope(MessageType.NEW_PROMPT, {"prompt": "hi"}, session_id="abc", timestamp="t")

    assert json.loads(envelope.encode()) == {
        "type": "new_prompt",
        "payload": {"prompt": "hi"},
        "sessionId": "abc",
        "timestamp": "t",
    }


def test_decode_accepts_bytes_and_missing_optional_fields():
    envelope = decode(b'{"type": "ping"}')

    assert envelope.type is MessageType.PING
    assert envelope.payload == {}
    assert envelope.session_id == ""
    assert envelope.timestamp


def test_decode_round_trips_unicode_prompt():
    original = Envelope(MessageType.NEW_PROMPT, {"prompt": "café ☕"}, session_id="s1")

    assert decode(original.encode()) == original


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"type": "explode"}',
        '{"type": "ping", "payload": [1]}',
        b"\xff\xfe",
    ],
)
def test_decode_rejects_malformed_frames(raw):
    with pytest.raises(EnvelopeError):
        decode(raw)
