"""Queued commands and their single-assignment results."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Any

from elmlink.core.errors import CommandStateError, CommandTimeoutError

LOGGER = logging.getLogger(__name__)

_UNSET = object()


class CommandResult:
    """Result slot plus signal, resolved exactly once.

    Synchronous callers block in :meth:`wait`; asyncio callers suspend in
    :meth:`wait_async` without holding a thread. The value is whatever the
    channel assigned: a decoded payload, the raw reply text, or ``None``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._value: Any = _UNSET
        self._callbacks: list[Callable[[Any], None]] = []

    def done(self) -> bool:
        return self._event.is_set()

    @property
    def result(self) -> Any:
        if self._value is _UNSET:
            return None
        return self._value

    def try_set_result(self, value: Any) -> bool:
        with self._lock:
            if self._value is not _UNSET:
                return False
            self._value = value
            callbacks = self._callbacks
            self._callbacks = []
        self._event.set()
        for callback in callbacks:
            self._run_callback(callback, value)
        return True

    def set_result(self, value: Any) -> None:
        if not self.try_set_result(value):
            raise CommandStateError("Command result was already resolved")

    def add_done_callback(self, callback: Callable[[Any], None]) -> None:
        with self._lock:
            if self._value is _UNSET:
                self._callbacks.append(callback)
                return
            value = self._value
        self._run_callback(callback, value)

    def remove_done_callback(self, callback: Callable[[Any], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, timeout: float | None = None) -> Any:
        if not self._event.wait(timeout):
            raise CommandTimeoutError(f"No result after {timeout}s")
        return self._value

    async def wait_async(self, timeout: float | None = None) -> Any:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()

        def _deliver(value: Any) -> None:
            if not future.done():
                future.set_result(value)

        def _on_done(value: Any) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_deliver, value)

        self.add_done_callback(_on_done)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            raise CommandTimeoutError(f"No result after {timeout}s") from exc
        finally:
            self.remove_done_callback(_on_done)

    @staticmethod
    def _run_callback(callback: Callable[[Any], None], value: Any) -> None:
        try:
            callback(value)
        except Exception:
            LOGGER.exception("Command result callback failed")


class QueuedCommand:
    def __init__(
        self,
        command_text: str,
        *,
        wait_for_response: bool = True,
        timeout: float | None = None,
    ) -> None:
        self.command_text = command_text
        self.wait_for_response = wait_for_response
        self.timeout = timeout
        self.result = CommandResult()

    def __repr__(self) -> str:
        return f"QueuedCommand({self.command_text!r}, wait_for_response={self.wait_for_response})"
