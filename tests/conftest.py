from __future__ import annotations

import threading

from pathlib import Path

import pytest

from elmlink.core.errors import TransportReceiveError, TransportSendError
from elmlink.data.catalog import load_payloads


class FakeAdapter:
    """Scripted ELM327: answers each written command from ``replies``."""

    def __init__(self) -> None:
        self.replies: dict[str, list[str]] = {
            "ATZ": ["ELM327 v1.5"],
            "ATI": ["ELM327 v1.5"],
            "ATRV": ["12.6V"],
        }
        self.silent: set[str] = set()
        self.fail_writes = False
        self.fail_reads = False
        self.fail_on: set[str] = set()
        self.written: list[str] = []
        self.opened = 0
        self._open = False
        self._buffer = bytearray()
        self._cond = threading.Condition()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self.opened += 1
        self._open = True

    def close(self) -> None:
        with self._cond:
            self._open = False
            self._cond.notify_all()

    def write(self, data: bytes) -> None:
        command = data.decode("ascii").rstrip("\r")
        if self.fail_writes or command in self.fail_on:
            raise TransportSendError(f"write of {command!r} refused")
        self.written.append(command)
        if command in self.silent:
            return
        lines = self.replies.get(command)
        if lines is None:
            lines = ["OK"] if command.startswith("AT") else ["NO DATA"]
        self.feed("\r".join(lines) + "\r\r>")

    def feed(self, text: str) -> None:
        with self._cond:
            self._buffer.extend(text.encode("ascii"))
            self._cond.notify_all()

    def read(self, size: int = 256) -> bytes:
        with self._cond:
            if self.fail_reads:
                raise TransportReceiveError("adapter link lost")
            if not self._buffer:
                self._cond.wait(0.01)
            if not self._open and not self._buffer:
                raise TransportReceiveError("adapter closed")
            chunk = bytes(self._buffer[:size])
            del self._buffer[:size]
            return chunk


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture(autouse=True)
def _isolated_catalog(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    load_payloads.cache_clear()
    yield
    load_payloads.cache_clear()
