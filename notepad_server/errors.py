from __future__ import annotations


class NotepadError(RuntimeError):
    """Base error for notepad relay failures."""


class NotepadNotFound(NotepadError):
    """The notepad file does not exist."""

    def __init__(self, path) -> None:
        super().__init__(f"notepad not found: {path}")
        self.path = path


class EnvelopeError(NotepadError):
    """A relay frame could not be decoded."""
