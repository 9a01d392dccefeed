"""Core data models used across loader, session, transports, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from elmlink.core.at_commands import Mode


@dataclass(frozen=True)
class TransportSpec:
    type: str
    port: str | None = None
    baudrate: int = 38400
    address: str | None = None
    channel: int = 1
    timeout_s: float = 0.1


@dataclass(frozen=True)
class SessionConfig:
    default_mode: int = Mode.SHOW_CURRENT_DATA
    reply_timeout_s: float = 5.0
    request_timeout_s: float | None = None
    close_protocol_on_dispose: bool = True


@dataclass(frozen=True)
class PayloadSpec:
    id: str
    name: str
    kind: str
    pid: int
    mode: int | None = None
    description: str = ""
    unit: str | None = None
    byte_count: int = 1
    scale: float = 1.0
    offset: float = 0.0
    values: dict[int, str] | None = None


@dataclass(frozen=True)
class DecodedMessage:
    mode: int
    pid: int
    long_pid: int | None
    message: str
    timestamp: datetime


@dataclass(frozen=True)
class DataReceivedEvent:
    data: Any
    timestamp: datetime


@dataclass(frozen=True)
class RawDataEvent:
    message: str
    timestamp: datetime


@dataclass(frozen=True)
class CanErrorEvent:
    message: str


@dataclass(frozen=True)
class ConnectionErrorEvent:
    exception: Exception
