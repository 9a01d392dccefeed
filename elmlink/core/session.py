"""ELM327 device session: initialization, typed requests, and teardown."""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, TypeVar

from elmlink.core import at_commands
from elmlink.core.command import CommandResult
from elmlink.core.decoder import ResponseDecoder
from elmlink.core.errors import SessionStateError
from elmlink.core.events import Callback, EventDispatcher, EventHook
from elmlink.core.model import ConnectionErrorEvent, RawDataEvent, SessionConfig
from elmlink.core.pid_cache import PidResolver, lookup_mode_override
from elmlink.core.reassembly import MessageReassembler
from elmlink.data.base import ObdData
from elmlink.transports.base import Transport
from elmlink.transports.channel import CommandChannel

LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=ObdData)


class SessionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    DISPOSED = "disposed"


def format_request(pid: int, mode: int) -> str:
    return f"{mode:02X}{pid:02X}"


class ELM327:
    """Session with one ELM327 adapter.

    Requests are queued and sent one at a time; replies are reassembled,
    decoded into ``ObdData`` instances and published to subscribers of the
    payload type and to wildcard (``ObdData``) subscribers.
    """

    def __init__(
        self,
        transport: Transport,
        config: SessionConfig | None = None,
        *,
        mode_lookup: Callable[[type], int | None] = lookup_mode_override,
    ) -> None:
        self.config = config or SessionConfig()
        self.mode = self.config.default_mode
        self.state = SessionState.UNINITIALIZED
        self._state_lock = threading.Lock()

        self.resolver = PidResolver(mode_lookup)
        self.dispatcher = EventDispatcher(ObdData)
        self.raw_data_received = EventHook("raw data")
        self.can_error = EventHook("CAN error")
        self.connection_error = EventHook("connection error")
        self.reassembler = MessageReassembler()
        self.decoder = ResponseDecoder(
            self.resolver,
            self.dispatcher,
            default_mode=lambda: self.mode,
            raw_data_received=self.raw_data_received,
            can_error=self.can_error,
        )
        self.channel = CommandChannel(
            transport,
            self.process_message,
            reply_timeout_s=self.config.reply_timeout_s,
            on_connection_error=self._on_connection_error,
        )

    def __enter__(self) -> ELM327:
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.dispose()

    def _transition(self, allowed: tuple[SessionState, ...], target: SessionState) -> None:
        with self._state_lock:
            if self.state not in allowed:
                raise SessionStateError(f"Cannot go from {self.state.value} to {target.value}")
            self.state = target

    def _ensure_usable(self) -> None:
        if self.state is SessionState.UNINITIALIZED:
            raise SessionStateError("Session is not initialized; call initialize() first")
        if self.state in (SessionState.DISPOSED, SessionState.FAILED):
            raise SessionStateError(f"Session is {self.state.value}")

    def _send_init_sequence(self) -> None:
        self.channel.open()
        for command in at_commands.INIT_SEQUENCE:
            LOGGER.debug("Sending %s (%s) ...", command.command, command.name)
            self.channel.send_command(command.command)

    def initialize(self) -> None:
        self._transition((SessionState.UNINITIALIZED,), SessionState.INITIALIZING)
        LOGGER.debug("Initializing ...")
        try:
            self._send_init_sequence()
            self.channel.wait_queue()
        except Exception:
            LOGGER.error("Failed to initialize the device!")
            self.state = SessionState.FAILED
            raise
        self.state = SessionState.READY

    async def initialize_async(self) -> None:
        self._transition((SessionState.UNINITIALIZED,), SessionState.INITIALIZING)
        LOGGER.debug("Initializing ...")
        try:
            self._send_init_sequence()
            await self.channel.wait_queue_async()
        except Exception:
            LOGGER.error("Failed to initialize the device!")
            self.state = SessionState.FAILED
            raise
        self.state = SessionState.READY

    def process_message(self, message: str | None) -> Any:
        if message is None:
            return None
        timestamp = datetime.now()
        logical = self.reassembler.feed(message)
        # Fragments are reported as received; the joined line is reported by the decoder.
        if logical != message:
            self.raw_data_received.fire(RawDataEvent(message=message, timestamp=timestamp))
        if logical is None:
            return None
        return self.decoder.process(logical, timestamp)

    def _on_connection_error(self, exc: Exception) -> None:
        self.connection_error.fire(ConnectionErrorEvent(exception=exc))

    def send_command(
        self,
        command: str | at_commands.ATCommand,
        *,
        wait_for_response: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        self._ensure_usable()
        if timeout is None:
            timeout = self.config.request_timeout_s
        return self.channel.send_command(
            str(command),
            wait_for_response=wait_for_response,
            timeout=timeout,
        )

    async def send_command_async(self, command: str | at_commands.ATCommand, timeout: float | None = None) -> Any:
        result = self.send_command(command, timeout=timeout)
        return await result.wait_async(self._wait_timeout(timeout))

    def send_command_with_header(
        self,
        header: str,
        command: str,
        *,
        wait_for_response: bool = True,
    ) -> CommandResult:
        self.send_command(f"{at_commands.SET_HEADER.command} {header}")
        return self.send_command(command, wait_for_response=wait_for_response)

    def add_to_pid_cache(self, payload_type: type[ObdData]) -> int:
        pid, _ = self.resolver.resolve(payload_type)
        return pid

    def initialize_pid_cache(self, payload_types: Iterable[type[ObdData]] | None = None) -> None:
        if payload_types is None:
            from elmlink.data.catalog import load_payloads

            payload_types = load_payloads().types.values()
        for payload_type in payload_types:
            self.resolver.resolve(payload_type)

    def request_pid(self, pid: int, mode_override: int | None = None) -> CommandResult:
        LOGGER.debug("Requesting PID %02X ...", pid)
        mode = self.mode if mode_override is None else mode_override
        return self.send_command(format_request(pid, mode))

    async def request_pid_async(self, pid: int, mode_override: int | None = None, timeout: float | None = None) -> Any:
        result = self.request_pid(pid, mode_override)
        return await result.wait_async(self._wait_timeout(timeout))

    def request_data(self, payload_type: type[T]) -> CommandResult:
        self._ensure_usable()
        LOGGER.debug("Requesting Type %s ...", payload_type.__name__)
        pid, mode = self.resolver.resolve(payload_type)
        return self.request_pid(pid, mode)

    def request_data_sync(self, payload_type: type[T], timeout: float | None = None) -> T | None:
        value = self.request_data(payload_type).wait(self._wait_timeout(timeout))
        return value if isinstance(value, payload_type) else None

    async def request_data_async(self, payload_type: type[T], timeout: float | None = None) -> T | None:
        value = await self.request_data(payload_type).wait_async(self._wait_timeout(timeout))
        return value if isinstance(value, payload_type) else None

    def _wait_timeout(self, timeout: float | None) -> float | None:
        if timeout is not None:
            return timeout
        return self.config.request_timeout_s

    def subscribe_data_received(self, payload_type: type[ObdData], callback: Callback) -> None:
        self.dispatcher.subscribe(payload_type, callback)

    def unsubscribe_data_received(self, payload_type: type[ObdData], callback: Callback) -> None:
        self.dispatcher.unsubscribe(payload_type, callback)

    def dispose(self, send_close_protocol: bool | None = None) -> None:
        with self._state_lock:
            if self.state is SessionState.DISPOSED:
                return
            was_open = self.channel.is_open
            self.state = SessionState.DISPOSED

        if send_close_protocol is None:
            send_close_protocol = self.config.close_protocol_on_dispose
        try:
            if send_close_protocol and was_open:
                self.channel.send_command(at_commands.CLOSE_PROTOCOL.command)
                self.channel.wait_queue(self.config.reply_timeout_s)
        except Exception:
            LOGGER.debug("Close protocol command failed during dispose", exc_info=True)

        self.dispatcher.clear()
        self.raw_data_received.clear()
        self.can_error.clear()
        self.connection_error.clear()
        self.channel.close()
