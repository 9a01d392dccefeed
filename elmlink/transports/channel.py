"""Half-duplex command queue on top of a byte transport.

One writer thread sends queued commands strictly one at a time and, for
commands that expect a reply, waits for the adapter's ``>`` prompt before
sending the next. One reader thread splits the incoming byte stream into
lines, hands each line to the session's handler and, on the prompt, resolves
the current command with whatever the handler decoded (or the last raw line).

A command that times out is abandoned. Before the next command is written
the writer waits, bounded by the reply timeout, for the abandoned reply's
prompt so that late lines are never credited to an unrelated command.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

from elmlink.core.command import CommandResult, QueuedCommand
from elmlink.core.errors import CommandTimeoutError, TransportError, TransportSendError
from elmlink.transports.base import Transport

LOGGER = logging.getLogger(__name__)

PROMPT = ">"
_SEPARATORS = ("\r", "\n", PROMPT)
_JOIN_TIMEOUT_S = 2.0


class CommandChannel:
    def __init__(
        self,
        transport: Transport,
        line_handler: Callable[[str], Any],
        *,
        reply_timeout_s: float = 5.0,
        on_connection_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self.transport = transport
        self._line_handler = line_handler
        self.reply_timeout_s = reply_timeout_s
        self._on_connection_error = on_connection_error

        self._queue: queue.Queue[QueuedCommand | None] = queue.Queue()
        self._pending = 0
        self._drained = threading.Condition()

        self._lock = threading.Lock()
        self._current: QueuedCommand | None = None
        self._current_value: Any = None
        self._current_line: str | None = None
        self._prompt = threading.Event()
        # Set after a reply timeout until the abandoned command's prompt shows up.
        self._owes_prompt = False
        self._stray_prompt = threading.Event()

        self._closed = threading.Event()
        self._shut_down = False
        self._writer: threading.Thread | None = None
        self._reader: threading.Thread | None = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._closed.is_set()

    def open(self) -> None:
        if self._writer is not None:
            return
        if not self.transport.is_open:
            self.transport.open()
        self._writer = threading.Thread(target=self._write_loop, name="elmlink-writer", daemon=True)
        self._reader = threading.Thread(target=self._read_loop, name="elmlink-reader", daemon=True)
        self._writer.start()
        self._reader.start()

    def send_command(
        self,
        command_text: str,
        *,
        wait_for_response: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        if self._closed.is_set():
            raise TransportSendError("Command channel is closed")
        command = QueuedCommand(command_text, wait_for_response=wait_for_response, timeout=timeout)
        with self._drained:
            self._pending += 1
        self._queue.put(command)
        LOGGER.debug("Queued %r", command)
        return command.result

    def wait_queue(self, timeout: float | None = None) -> None:
        with self._drained:
            if not self._drained.wait_for(lambda: self._pending == 0, timeout):
                raise CommandTimeoutError(f"Command queue not drained after {timeout}s")

    async def wait_queue_async(self, timeout: float | None = None) -> None:
        await asyncio.to_thread(self.wait_queue, timeout)

    def close(self) -> None:
        if self._shut_down:
            return
        self._shut_down = True
        self._closed.set()
        self._prompt.set()
        self._stray_prompt.set()
        self._queue.put(None)
        if self._writer is not None:
            self._writer.join(_JOIN_TIMEOUT_S)
        self.transport.close()
        if self._reader is not None:
            self._reader.join(_JOIN_TIMEOUT_S)
        self._drain_unsent()

    def _drain_unsent(self) -> None:
        while True:
            try:
                command = self._queue.get_nowait()
            except queue.Empty:
                return
            if command is not None:
                self._finish(command)

    def _write_loop(self) -> None:
        while True:
            command = self._queue.get()
            if command is None:
                return
            try:
                self._execute(command)
            finally:
                self._finish(command)

    def _execute(self, command: QueuedCommand) -> None:
        if self._closed.is_set():
            return
        self._skip_stray_reply()

        with self._lock:
            self._current = command
            self._current_value = None
            self._current_line = None
            self._prompt.clear()

        try:
            self.transport.write(f"{command.command_text}\r".encode("ascii"))
        except TransportError as exc:
            LOGGER.error("Sending %r failed: %s", command.command_text, exc)
            self._release(command)
            return

        if not command.wait_for_response:
            self._release(command)
            return

        timeout = command.timeout if command.timeout is not None else self.reply_timeout_s
        if not self._prompt.wait(timeout):
            LOGGER.warning("No prompt after %r within %.1fs", command.command_text, timeout)
            self._abandon(command)

    def _skip_stray_reply(self) -> None:
        with self._lock:
            if not self._owes_prompt:
                return
        if not self._stray_prompt.wait(self.reply_timeout_s):
            LOGGER.warning("Reply of an abandoned command never completed, resuming")
        with self._lock:
            self._owes_prompt = False

    def _abandon(self, command: QueuedCommand) -> None:
        with self._lock:
            if self._current is command:
                self._current = None
                self._owes_prompt = True
                self._stray_prompt.clear()

    def _release(self, command: QueuedCommand) -> None:
        with self._lock:
            if self._current is command:
                self._current = None

    def _finish(self, command: QueuedCommand) -> None:
        command.result.try_set_result(None)
        with self._drained:
            self._pending -= 1
            if self._pending == 0:
                self._drained.notify_all()

    def _read_loop(self) -> None:
        buffer = ""
        while not self._closed.is_set():
            try:
                chunk = self.transport.read(256)
            except TransportError as exc:
                if not self._closed.is_set():
                    LOGGER.error("Adapter read failed, closing channel: %s", exc)
                    self._closed.set()
                    self._prompt.set()
                    self._stray_prompt.set()
                    self._queue.put(None)
                    self._report_connection_error(exc)
                return
            if chunk:
                buffer = self._consume(buffer + chunk.decode("ascii", errors="ignore"))

    def _consume(self, buffer: str) -> str:
        while True:
            index = min((i for i in (buffer.find(s) for s in _SEPARATORS) if i >= 0), default=-1)
            if index < 0:
                return buffer
            line, separator, buffer = buffer[:index].strip(), buffer[index], buffer[index + 1 :]
            if line:
                self._handle_line(line)
            if separator == PROMPT:
                self._handle_prompt()

    def _handle_line(self, line: str) -> None:
        try:
            value = self._line_handler(line)
        except Exception:
            LOGGER.exception("Handling adapter line %r failed", line)
            return
        with self._lock:
            if self._current is None:
                return
            if value is not None:
                self._current_value = value
            self._current_line = line

    def _handle_prompt(self) -> None:
        with self._lock:
            command, self._current = self._current, None
            value = self._current_value if self._current_value is not None else self._current_line
            if command is None and self._owes_prompt:
                self._owes_prompt = False
                self._stray_prompt.set()
        if command is not None:
            command.result.try_set_result(value)
        self._prompt.set()

    def _report_connection_error(self, exc: Exception) -> None:
        if self._on_connection_error is None:
            return
        try:
            self._on_connection_error(exc)
        except Exception:
            LOGGER.exception("Connection error handler failed")
