"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol


class Transport(Protocol):
    """Byte stream to an adapter.

    ``read`` returns ``b""`` when nothing arrived within the transport's
    read timeout so callers can poll for shutdown.
    """

    @property
    def is_open(self) -> bool: ...

    def open(self) -> None: ...

    def close(self) -> None: ...

    def write(self, data: bytes) -> None: ...

    def read(self, size: int = 256) -> bytes: ...
