"""Mode/PID resolution for payload types."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from elmlink.core.errors import PayloadRegistrationError

LOGGER = logging.getLogger(__name__)

_MAX_SHORT_PID = 0xFF
_MAX_LONG_PID = 0xFFFF


def lookup_mode_override(payload_type: type) -> int | None:
    """Read the fixed mode a payload type declares, if any."""
    mode = getattr(payload_type, "MODE", None)
    if mode is None:
        return None
    return int(mode)


class PidResolver:
    """Two-way memo of payload type <-> PID plus per-type mode override.

    Entries are inserted once per type and never changed afterwards.
    Inserting takes a lock; reading an existing entry does not.
    """

    def __init__(self, mode_lookup: Callable[[type], int | None] = lookup_mode_override) -> None:
        self._mode_lookup = mode_lookup
        self._lock = threading.Lock()
        self._pids: dict[type, int] = {}
        self._modes: dict[type, int | None] = {}
        self._types: dict[int, type] = {}

    def resolve(self, payload_type: type) -> tuple[int, int | None]:
        pid = self._pids.get(payload_type)
        if pid is not None:
            return pid, self._modes[payload_type]
        return self.register(payload_type)

    def register(self, payload_type: type) -> tuple[int, int | None]:
        with self._lock:
            if payload_type in self._pids:
                return self._pids[payload_type], self._modes[payload_type]

            pid = _read_pid(payload_type)
            mode = self._mode_lookup(payload_type)
            if mode is not None and not 0 <= mode <= 0xFF:
                raise PayloadRegistrationError(
                    f"{payload_type.__name__} declares mode {mode!r} outside 0x00-0xFF"
                )

            # Modes first: readers probe _pids without the lock.
            self._modes[payload_type] = mode
            owner = self._types.setdefault(pid, payload_type)
            if owner is not payload_type:
                LOGGER.warning(
                    "PID %02X already maps to %s; replies will not decode as %s",
                    pid,
                    owner.__name__,
                    payload_type.__name__,
                )
            if pid > _MAX_SHORT_PID:
                self._types.setdefault(pid & _MAX_SHORT_PID, payload_type)
            self._pids[payload_type] = pid

        LOGGER.debug(
            "Registered %s as PID %02X (mode %s)",
            payload_type.__name__,
            pid,
            "default" if mode is None else f"{mode:02X}",
        )
        return pid, mode

    def type_for_pid(self, pid: int) -> type | None:
        return self._types.get(pid)

    def mode_for(self, payload_type: type) -> int | None:
        return self._modes.get(payload_type)

    def registered_modes(self) -> set[int]:
        return {mode for mode in list(self._modes.values()) if mode is not None}

    def registered_types(self) -> list[type]:
        return list(self._pids)

    def __contains__(self, payload_type: object) -> bool:
        return payload_type in self._pids


def _read_pid(payload_type: type) -> int:
    try:
        sample: Any = payload_type()
    except Exception as exc:
        raise PayloadRegistrationError(
            f"Could not construct {getattr(payload_type, '__name__', payload_type)!r}: {exc}"
        ) from exc

    pid = getattr(sample, "PID", None)
    if isinstance(pid, bool) or not isinstance(pid, int):
        raise PayloadRegistrationError(
            f"{payload_type.__name__} does not expose an integer PID"
        )
    if not 0 <= pid <= _MAX_LONG_PID:
        raise PayloadRegistrationError(
            f"{payload_type.__name__} PID {pid!r} outside 0x00-0xFFFF"
        )
    return pid
