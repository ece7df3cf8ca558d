from __future__ import annotations

import re
from typing import List

PROCESSED_MARKER = "<<<PROCESSED>>>"
STOP_WORD = "STOP"

SEGMENT_SPLIT_RE = re.compile(r"(?:\r?\n){2,}")
AGENT_PATTERNS = (
    re.compile(r"^\[AGENT", re.IGNORECASE),
    re.compile(r"^" + re.escape(PROCESSED_MARKER)),
    re.compile(r"^\[Write your response", re.IGNORECASE),
    re.compile(r"^# "),
    re.compile(r"^={3,}"),
)


def is_agent_segment(text: str) -> bool:
    """True when a segment was written by the agent (banners, markers, header)."""
    stripped = text.strip()
    return any(pattern.match(stripped) for pattern in AGENT_PATTERNS)


def is_stop(prompt: str) -> bool:
    return prompt.strip().upper() == STOP_WORD


def extract(content: str, from_offset: int = 0) -> List[str]:
    """
    Return the human prompts written after ``from_offset``.

    Segments are separated by one or more blank lines. Agent-authored
    segments and processed markers are skipped; everything else is returned
    in document order. Nothing is mutated, so repeated calls with the same
    arguments return the same prompts.
    """
    tail = content[max(from_offset, 0):]
    prompts: List[str] = []
    for segment in SEGMENT_SPLIT_RE.split(tail):
        text = segment.strip()
        if not text or text == PROCESSED_MARKER:
            continue
        if is_agent_segment(text):
            continue
        prompts.append(text)
    return prompts
