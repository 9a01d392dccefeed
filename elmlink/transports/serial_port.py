"""Serial (USB, or RFCOMM bound to a tty) transport using pyserial."""

from __future__ import annotations

import logging

import serial
from serial.tools import list_ports

from elmlink.core.errors import (
    TransportConnectError,
    TransportReceiveError,
    TransportSendError,
)

LOGGER = logging.getLogger(__name__)


def find_serial_ports() -> list[str]:
    return sorted(port.device for port in list_ports.comports())


class SerialTransport:
    def __init__(self, port: str, *, baudrate: int = 38400, timeout_s: float = 0.1) -> None:
        self.port = port
        self.baudrate = baudrate
        self.timeout_s = timeout_s
        self._connection: serial.Serial | None = None

    @property
    def is_open(self) -> bool:
        return self._connection is not None and self._connection.is_open

    def open(self) -> None:
        try:
            self._connection = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                timeout=self.timeout_s,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
            )
        except (OSError, serial.SerialException) as exc:
            raise TransportConnectError(f"Could not open serial port {self.port}: {exc}") from exc
        LOGGER.debug("Opened %s at %d baud", self.port, self.baudrate)

    def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                connection.close()
            except (OSError, serial.SerialException) as exc:
                LOGGER.debug("Closing %s failed: %s", self.port, exc)

    def write(self, data: bytes) -> None:
        if self._connection is None:
            raise TransportSendError(f"Serial port {self.port} is not open")
        try:
            self._connection.write(data)
            self._connection.flush()
        except (OSError, serial.SerialException) as exc:
            raise TransportSendError(f"Serial write failed: {exc}") from exc

    def read(self, size: int = 256) -> bytes:
        if self._connection is None:
            raise TransportReceiveError(f"Serial port {self.port} is not open")
        try:
            waiting = self._connection.in_waiting
            return self._connection.read(min(size, waiting) if waiting else 1)
        except (OSError, serial.SerialException) as exc:
            raise TransportReceiveError(f"Serial read failed: {exc}") from exc
