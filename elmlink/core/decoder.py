"""Interpretation and routing of logical reply lines."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from elmlink.core.at_commands import RESPONSE_MODE_OFFSET
from elmlink.core.events import EventDispatcher, EventHook
from elmlink.core.model import CanErrorEvent, DecodedMessage, RawDataEvent
from elmlink.core.pid_cache import PidResolver

LOGGER = logging.getLogger(__name__)

CAN_ERROR = "CAN ERROR"
_HEX_RE = re.compile(r"^[0-9A-Fa-f]+$")
_MIN_FRAME_LENGTH = 5


def _hex_value(text: str) -> int | None:
    if not _HEX_RE.match(text):
        return None
    return int(text, 16)


class ResponseDecoder:
    """Turns reply lines into payload instances and fans them out.

    Protocol noise (short lines, non-hex mode bytes, unknown PIDs, frames in
    a mode nobody asked for) is dropped without raising.
    """

    def __init__(
        self,
        resolver: PidResolver,
        dispatcher: EventDispatcher,
        *,
        default_mode: Callable[[], int],
        raw_data_received: EventHook,
        can_error: EventHook,
    ) -> None:
        self.resolver = resolver
        self.dispatcher = dispatcher
        self._default_mode = default_mode
        self.raw_data_received = raw_data_received
        self.can_error = can_error

    def process(self, message: str | None, timestamp: datetime | None = None) -> Any:
        if not message:
            return None
        timestamp = timestamp or datetime.now()

        self.raw_data_received.fire(RawDataEvent(message=message, timestamp=timestamp))

        if message.upper() == CAN_ERROR:
            self.can_error.fire(CanErrorEvent(message=message))
            return None
        if len(message) < _MIN_FRAME_LENGTH:
            return None

        decoded = self.parse(message, timestamp)
        if decoded is None:
            return None
        return self.route(decoded)

    def parse(self, message: str, timestamp: datetime) -> DecodedMessage | None:
        response_mode = _hex_value(message[0:2])
        if response_mode is None:
            return None

        mode = response_mode - RESPONSE_MODE_OFFSET
        if mode != self._default_mode() and mode not in self.resolver.registered_modes():
            return None

        pid = _hex_value(message[2:4])
        if pid is None:
            return None
        long_pid = _hex_value(message[2:6]) if len(message) >= 6 else None
        return DecodedMessage(
            mode=mode,
            pid=pid,
            long_pid=long_pid,
            message=message,
            timestamp=timestamp,
        )

    def route(self, decoded: DecodedMessage) -> Any:
        data_type = None
        if decoded.long_pid is not None:
            data_type = self.resolver.type_for_pid(decoded.long_pid)
        if data_type is None:
            data_type = self.resolver.type_for_pid(decoded.pid)
        if data_type is None:
            return None

        expected_mode = self.resolver.mode_for(data_type)
        if expected_mode is None:
            expected_mode = self._default_mode()
        if expected_mode != decoded.mode:
            LOGGER.debug(
                "Dropping %s frame in mode %02X, %s expects %02X",
                decoded.message,
                decoded.mode,
                data_type.__name__,
                expected_mode,
            )
            return None

        data = data_type()
        start = 6 if data.PID == decoded.long_pid else 4
        try:
            data.load(decoded.message[start:])
        except ValueError as exc:
            LOGGER.debug("Could not decode %s as %s: %s", decoded.message, data_type.__name__, exc)
            return None

        self.dispatcher.raise_event(data_type, data, decoded.timestamp)
        return data
