"""Joining of replies the adapter splits across two lines."""

from __future__ import annotations

_DIGITS = "0123456789"


class MessageReassembler:
    """Merges ``0:``/``1:`` prefixed fragments into one logical line.

    Holds at most one pending first half; a new ``0:`` replaces it.
    """

    def __init__(self) -> None:
        self._chunk: str | None = None

    @property
    def pending(self) -> str | None:
        return self._chunk

    def feed(self, line: str) -> str | None:
        if len(line) < 2 or line[1] != ":" or line[0] not in _DIGITS:
            return line

        index, remainder = line[0], line[2:]
        if index == "0":
            self._chunk = remainder
            return None
        if index == "1":
            full = (self._chunk or "") + remainder
            self._chunk = None
            return full
        return None

    def reset(self) -> None:
        self._chunk = None
