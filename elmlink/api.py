"""Stable public API for building tooling on top of elmlink.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from elmlink.core.at_commands import ATCommand, Mode
from elmlink.core.command import CommandResult
from elmlink.core.errors import (
    CommandError,
    CommandStateError,
    CommandTimeoutError,
    ElmlinkError,
    PayloadLoadError,
    PayloadNotFoundError,
    PayloadRegistrationError,
    PayloadValidationError,
    SessionStateError,
    TransportConnectError,
    TransportError,
    TransportReceiveError,
    TransportSendError,
    TransportTimeoutError,
)
from elmlink.core.model import (
    CanErrorEvent,
    ConnectionErrorEvent,
    DataReceivedEvent,
    PayloadSpec,
    RawDataEvent,
    SessionConfig,
    TransportSpec,
)
from elmlink.core.session import ELM327, SessionState
from elmlink.data.base import AsciiData, BitmaskData, EnumData, LinearData, ObdData
from elmlink.data.catalog import PayloadCatalog, load_payloads
from elmlink.transports.base import Transport
from elmlink.transports.rfcomm import RFCOMMTransport
from elmlink.transports.serial_port import SerialTransport, find_serial_ports

__all__ = [
    "ElmlinkError",
    "CommandError",
    "CommandStateError",
    "CommandTimeoutError",
    "PayloadLoadError",
    "PayloadNotFoundError",
    "PayloadRegistrationError",
    "PayloadValidationError",
    "SessionStateError",
    "TransportError",
    "TransportConnectError",
    "TransportReceiveError",
    "TransportSendError",
    "TransportTimeoutError",
    "ATCommand",
    "Mode",
    "CommandResult",
    "CanErrorEvent",
    "ConnectionErrorEvent",
    "DataReceivedEvent",
    "PayloadSpec",
    "RawDataEvent",
    "SessionConfig",
    "TransportSpec",
    "ELM327",
    "SessionState",
    "ObdData",
    "AsciiData",
    "BitmaskData",
    "EnumData",
    "LinearData",
    "PayloadCatalog",
    "load_payloads",
    "Transport",
    "RFCOMMTransport",
    "SerialTransport",
    "find_serial_ports",
    "open_transport",
    "connect",
]


def open_transport(spec: TransportSpec) -> Transport:
    """Build (but do not open) the transport described by ``spec``."""
    if spec.type == "serial":
        if not spec.port:
            raise TransportConnectError("Serial transport needs a port")
        return SerialTransport(spec.port, baudrate=spec.baudrate, timeout_s=spec.timeout_s)
    if spec.type == "rfcomm":
        if not spec.address:
            raise TransportConnectError("RFCOMM transport needs a Bluetooth address")
        return RFCOMMTransport(spec.address, channel=spec.channel, timeout_s=spec.timeout_s)
    raise TransportConnectError(f"Unsupported transport type '{spec.type}'")


def connect(spec: TransportSpec, config: SessionConfig | None = None) -> ELM327:
    """Open the adapter described by ``spec`` and run the AT init sequence.

    Raises whatever initialization raised; the returned session is ready for
    requests and should be disposed by the caller.
    """
    session = ELM327(open_transport(spec), config)
    try:
        session.initialize()
    except ElmlinkError:
        session.dispose(send_close_protocol=False)
        raise
    return session
