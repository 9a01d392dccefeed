"""RFCOMM transport for Bluetooth SPP adapters using Python sockets."""

from __future__ import annotations

import logging
import socket

from elmlink.core.errors import (
    TransportConnectError,
    TransportReceiveError,
    TransportSendError,
    TransportTimeoutError,
)

LOGGER = logging.getLogger(__name__)


class RFCOMMTransport:
    def __init__(
        self,
        address: str,
        *,
        channel: int = 1,
        timeout_s: float = 0.1,
        connect_timeout_s: float = 10.0,
    ) -> None:
        self.address = address
        self.channel = channel
        self.timeout_s = timeout_s
        self.connect_timeout_s = connect_timeout_s
        self._socket: socket.socket | None = None

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    def open(self) -> None:
        try:
            af_bluetooth = socket.AF_BLUETOOTH
            btproto_rfcomm = socket.BTPROTO_RFCOMM
        except AttributeError as exc:
            raise TransportConnectError(
                "This Python build does not expose Bluetooth socket APIs (AF_BLUETOOTH/BTPROTO_RFCOMM)."
            ) from exc

        try:
            bt_socket = socket.socket(
                af_bluetooth,
                socket.SOCK_STREAM,
                btproto_rfcomm,
            )
        except OSError as exc:
            raise TransportConnectError(f"Could not create RFCOMM socket: {exc}") from exc

        bt_socket.settimeout(self.connect_timeout_s)
        try:
            bt_socket.connect((self.address, self.channel))
        except TimeoutError as exc:
            bt_socket.close()
            raise TransportTimeoutError(
                f"RFCOMM connect timed out for {self.address} on channel {self.channel}"
            ) from exc
        except OSError as exc:
            bt_socket.close()
            raise TransportConnectError(
                f"RFCOMM connect failed for {self.address} on channel {self.channel}: {exc}"
            ) from exc

        bt_socket.settimeout(self.timeout_s)
        self._socket = bt_socket
        LOGGER.debug("Connected to %s on RFCOMM channel %d", self.address, self.channel)

    def close(self) -> None:
        bt_socket, self._socket = self._socket, None
        if bt_socket is not None:
            bt_socket.close()

    def write(self, data: bytes) -> None:
        if self._socket is None:
            raise TransportSendError(f"RFCOMM link to {self.address} is not open")
        try:
            self._socket.sendall(data)
        except OSError as exc:
            raise TransportSendError(f"RFCOMM send failed: {exc}") from exc

    def read(self, size: int = 256) -> bytes:
        if self._socket is None:
            raise TransportReceiveError(f"RFCOMM link to {self.address} is not open")
        try:
            data = self._socket.recv(size)
        except TimeoutError:
            return b""
        except OSError as exc:
            raise TransportReceiveError(f"RFCOMM receive failed: {exc}") from exc
        if not data:
            raise TransportReceiveError(f"RFCOMM link to {self.address} closed by peer")
        return data
