"""Payload types: static PID/mode descriptor plus a decode routine."""

from __future__ import annotations

from typing import Any, ClassVar


class ObdData:
    """Base of every decodable payload.

    Subclasses set ``PID`` (and ``MODE`` when the value lives outside the
    session's default mode) and implement :meth:`decode`. Instances are
    created empty and filled by :meth:`load` with the reply payload hex.
    """

    PID: ClassVar[int] = -1
    MODE: ClassVar[int | None] = None
    NAME: ClassVar[str] = ""
    DESCRIPTION: ClassVar[str] = ""
    UNIT: ClassVar[str | None] = None

    def __init__(self) -> None:
        self.raw = b""
        self.value: Any = None

    def load(self, payload_hex: str) -> None:
        self.raw = bytes.fromhex(payload_hex)
        self.value = self.decode(self.raw)

    def decode(self, payload: bytes) -> Any:
        return payload.hex().upper()

    def __str__(self) -> str:
        if self.UNIT:
            return f"{self.value} {self.UNIT}"
        return str(self.value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(value={self.value!r})"


class LinearData(ObdData):
    BYTES: ClassVar[int] = 1
    SCALE: ClassVar[float] = 1.0
    OFFSET: ClassVar[float] = 0.0

    def decode(self, payload: bytes) -> float | int:
        if len(payload) < self.BYTES:
            raise ValueError(f"{type(self).__name__} needs {self.BYTES} bytes, got {len(payload)}")
        raw = int.from_bytes(payload[: self.BYTES], "big")
        value = raw * self.SCALE + self.OFFSET
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value


class EnumData(ObdData):
    VALUES: ClassVar[dict[int, str]] = {}

    def decode(self, payload: bytes) -> str:
        if not payload:
            raise ValueError(f"{type(self).__name__} needs 1 byte")
        code = payload[0]
        return self.VALUES.get(code, f"unknown(0x{code:02X})")


class AsciiData(ObdData):
    def decode(self, payload: bytes) -> str:
        return "".join(chr(b) for b in payload if 0x20 <= b < 0x7F).strip()


class BitmaskData(ObdData):
    """Supported-PID bitmap; bit 7 of the first byte is ``PID + 1``."""

    def decode(self, payload: bytes) -> tuple[int, ...]:
        bits = int.from_bytes(payload[:4], "big")
        width = len(payload[:4]) * 8
        return tuple(
            self.PID + index + 1
            for index in range(width)
            if bits & (1 << (width - 1 - index))
        )
