from __future__ import annotations

import asyncio
import threading

import pytest

from elmlink.core.at_commands import Mode
from elmlink.core.errors import (
    PayloadRegistrationError,
    SessionStateError,
    TransportConnectError,
    TransportReceiveError,
)
from elmlink.core.model import (
    CanErrorEvent,
    ConnectionErrorEvent,
    DataReceivedEvent,
    RawDataEvent,
    SessionConfig,
)
from elmlink.core.session import ELM327, SessionState, format_request
from elmlink.data.base import AsciiData, EnumData, LinearData
from elmlink.data.catalog import load_payloads

INIT_COMMANDS = ["ATZ", "ATE0", "ATL0", "ATH0", "ATS0", "ATSP0"]


class EngineRpm(LinearData):
    PID = 0x0C
    BYTES = 2
    SCALE = 0.25
    UNIT = "rpm"


class VehicleSpeed(LinearData):
    PID = 0x0D
    UNIT = "km/h"


class FuelType(EnumData):
    PID = 0x51
    VALUES = {0x01: "gasoline", 0x04: "diesel"}


class Vin(AsciiData):
    PID = 0x02
    MODE = 0x09


class VinIdentifier(AsciiData):
    PID = 0xF190
    MODE = 0x22


class Unbuildable(LinearData):
    PID = 0x33

    def __init__(self, required: int) -> None:
        super().__init__()


def _session(adapter, **config) -> ELM327:
    session = ELM327(adapter, SessionConfig(reply_timeout_s=0.5, **config))
    session.initialize()
    return session


def test_format_request_is_uppercase_zero_padded() -> None:
    assert format_request(0x0C, 0x01) == "010C"
    assert format_request(0x02, 0x09) == "0902"
    assert format_request(0xF190, 0x22) == "22F190"


def test_initialize_sends_setup_sequence_and_becomes_ready(adapter) -> None:
    session = ELM327(adapter)
    assert session.state is SessionState.UNINITIALIZED
    session.initialize()
    try:
        assert adapter.written == INIT_COMMANDS
        assert session.state is SessionState.READY
    finally:
        session.dispose()


def test_initialize_async(adapter) -> None:
    session = ELM327(adapter)

    async def _main() -> None:
        await session.initialize_async()

    asyncio.run(_main())
    try:
        assert adapter.written == INIT_COMMANDS
        assert session.state is SessionState.READY
    finally:
        session.dispose()


def test_initialize_failure_is_reraised_and_session_unusable(adapter) -> None:
    def _refuse() -> None:
        raise TransportConnectError("port busy")

    adapter.open = _refuse
    session = ELM327(adapter)
    with pytest.raises(TransportConnectError):
        session.initialize()
    assert session.state is SessionState.FAILED
    with pytest.raises(SessionStateError):
        session.request_data(EngineRpm)
    with pytest.raises(SessionStateError):
        session.initialize()


def test_request_data_builds_mode_and_pid_command(adapter) -> None:
    session = _session(adapter)
    try:
        session.request_data(EngineRpm)
        session.request_data(Vin)
        session.request_data(VinIdentifier)
        session.channel.wait_queue(2.0)
        assert adapter.written[len(INIT_COMMANDS):] == ["010C", "0902", "22F190"]
    finally:
        session.dispose()


def test_request_data_sync_returns_decoded_value_and_notifies(adapter) -> None:
    adapter.replies["010C"] = ["410C0FA0"]
    session = _session(adapter)
    typed: list[DataReceivedEvent] = []
    wildcard: list[DataReceivedEvent] = []
    session.subscribe_data_received(EngineRpm, typed.append)
    session.dispatcher.subscribe_any(wildcard.append)
    try:
        rpm = session.request_data_sync(EngineRpm, timeout=2.0)
        assert isinstance(rpm, EngineRpm)
        assert rpm.value == 1000
        assert str(rpm) == "1000 rpm"
        assert [e.data for e in typed] == [rpm]
        assert [e.data for e in wildcard] == [rpm]
    finally:
        session.dispose()


def test_request_data_async(adapter) -> None:
    adapter.replies["010D"] = ["410D32"]
    adapter.replies["0151"] = ["415104"]
    session = _session(adapter)

    async def _main() -> tuple[object, object]:
        speed = await session.request_data_async(VehicleSpeed, timeout=2.0)
        fuel = await session.request_data_async(FuelType, timeout=2.0)
        return speed, fuel

    try:
        speed, fuel = asyncio.run(_main())
        assert isinstance(speed, VehicleSpeed) and speed.value == 50
        assert isinstance(fuel, FuelType) and fuel.value == "diesel"
    finally:
        session.dispose()


def test_no_data_reply_gives_none(adapter) -> None:
    session = _session(adapter)
    try:
        assert session.request_data_sync(EngineRpm, timeout=2.0) is None
    finally:
        session.dispose()


def test_fragmented_reply_is_reassembled(adapter) -> None:
    adapter.replies["0902"] = ["014", "0:49020131443447", "1:5030305235"]
    session = _session(adapter)
    try:
        vin = session.request_data_sync(Vin, timeout=2.0)
        assert isinstance(vin, Vin)
        assert vin.value == "1D4GP00R5"
    finally:
        session.dispose()


def test_lone_first_fragment_emits_nothing(adapter) -> None:
    adapter.replies["010C"] = ["0:410C0FA0"]
    session = _session(adapter)
    try:
        assert session.request_data_sync(EngineRpm, timeout=2.0) is None
        assert session.reassembler.pending == "410C0FA0"
    finally:
        session.dispose()


def test_process_message_reassembles_empty_second_half(adapter) -> None:
    session = ELM327(adapter)
    session.add_to_pid_cache(EngineRpm)
    assert session.process_message("0:410C0FA0") is None
    rpm = session.process_message("1:")
    assert isinstance(rpm, EngineRpm)
    assert rpm.value == 1000


def test_raw_lines_and_can_error_hooks(adapter) -> None:
    adapter.replies["010C"] = ["CAN ERROR"]
    session = _session(adapter)
    raw: list[RawDataEvent] = []
    errors: list[CanErrorEvent] = []
    typed: list[DataReceivedEvent] = []
    session.raw_data_received.subscribe(raw.append)
    session.can_error.subscribe(errors.append)
    session.dispatcher.subscribe_any(typed.append)
    try:
        assert session.request_data_sync(EngineRpm, timeout=2.0) is None
        assert [e.message for e in raw] == ["CAN ERROR"]
        assert [e.message for e in errors] == ["CAN ERROR"]
        assert typed == []
    finally:
        session.dispose()


def test_send_command_returns_raw_reply(adapter) -> None:
    session = _session(adapter)
    try:
        assert session.send_command("ATRV").wait(2.0) == "12.6V"
        assert asyncio.run(session.send_command_async("ATI", timeout=2.0)) == "ELM327 v1.5"
    finally:
        session.dispose()


def test_send_command_with_header(adapter) -> None:
    session = _session(adapter)
    try:
        session.send_command_with_header("7E0", "010C").wait(2.0)
        assert adapter.written[-2:] == ["ATSH 7E0", "010C"]
    finally:
        session.dispose()


def test_request_pid_uses_default_mode_and_override(adapter) -> None:
    adapter.replies["010C"] = ["410C0FA0"]
    session = _session(adapter)
    session.initialize_pid_cache([EngineRpm])
    try:
        assert isinstance(session.request_pid(0x0C).wait(2.0), EngineRpm)
        session.request_pid(0x02, 0x09).wait(2.0)
        assert adapter.written[-2:] == ["010C", "0902"]
        value = asyncio.run(session.request_pid_async(0x0C, timeout=2.0))
        assert isinstance(value, EngineRpm)
    finally:
        session.dispose()


def test_initialize_pid_cache_from_catalog(adapter) -> None:
    session = ELM327(adapter)
    session.initialize_pid_cache()
    rpm_type = session.resolver.type_for_pid(0x0C)
    assert rpm_type is not None
    assert rpm_type.__name__ == "EngineRpm"
    assert session.resolver.type_for_pid(0xF190).__name__ == "VinIdentifier"
    assert {0x09, 0x22} <= session.resolver.registered_modes()


def test_registration_failure_propagates_to_requester(adapter) -> None:
    session = _session(adapter)
    try:
        with pytest.raises(PayloadRegistrationError):
            session.request_data(Unbuildable)
    finally:
        session.dispose()


def test_dispose_sends_close_protocol_and_clears_subscriptions(adapter) -> None:
    session = _session(adapter)
    seen: list[DataReceivedEvent] = []
    session.subscribe_data_received(EngineRpm, seen.append)
    session.dispose()

    assert adapter.written[-1] == "ATPC"
    assert session.state is SessionState.DISPOSED
    assert session.dispatcher.subscriber_count(EngineRpm) == 0
    assert adapter.is_open is False
    with pytest.raises(SessionStateError):
        session.request_data(EngineRpm)
    session.dispose()


def test_dispose_without_close_protocol(adapter) -> None:
    session = _session(adapter, close_protocol_on_dispose=False)
    session.dispose()
    assert "ATPC" not in adapter.written


def test_dispose_swallows_close_protocol_failure(adapter) -> None:
    adapter.fail_on.add("ATPC")
    session = _session(adapter)
    session.dispose()
    assert session.state is SessionState.DISPOSED
    assert adapter.is_open is False


def test_context_manager_initializes_and_disposes(adapter) -> None:
    with ELM327(adapter, SessionConfig(reply_timeout_s=0.5)) as session:
        assert session.state is SessionState.READY
    assert session.state is SessionState.DISPOSED
    assert adapter.written[-1] == "ATPC"


def test_default_mode_can_be_changed_for_pid_requests(adapter) -> None:
    session = _session(adapter)
    try:
        assert session.mode == Mode.SHOW_CURRENT_DATA
        session.mode = Mode.SHOW_FREEZE_FRAME_DATA
        session.request_pid(0x0C).wait(2.0)
        assert adapter.written[-1] == "020C"
    finally:
        session.dispose()


def test_requests_before_initialize_are_rejected(adapter) -> None:
    session = ELM327(adapter)
    with pytest.raises(SessionStateError):
        session.request_data_sync(EngineRpm)
    with pytest.raises(SessionStateError):
        session.send_command("ATRV")
    assert adapter.written == []


def test_fragment_lines_and_joined_line_reach_raw_observers(adapter) -> None:
    session = ELM327(adapter)
    session.add_to_pid_cache(EngineRpm)
    raw: list[RawDataEvent] = []
    session.raw_data_received.subscribe(raw.append)

    session.process_message("0:410C0F")
    rpm = session.process_message("1:A0")
    session.process_message("410D32")

    assert isinstance(rpm, EngineRpm)
    assert [e.message for e in raw] == ["0:410C0F", "1:A0", "410C0FA0", "410D32"]


def test_catalog_types_stay_routable_after_cache_seeding(adapter) -> None:
    adapter.replies["010C"] = ["410C0FA0"]
    rpm_type = load_payloads().get("engine_rpm")
    session = _session(adapter)
    session.initialize_pid_cache()
    typed: list[DataReceivedEvent] = []
    session.subscribe_data_received(rpm_type, typed.append)
    try:
        rpm = session.request_data_sync(rpm_type, timeout=2.0)
        assert isinstance(rpm, rpm_type)
        assert rpm.value == 1000
        assert [e.data for e in typed] == [rpm]
    finally:
        session.dispose()


def test_lost_adapter_link_fires_connection_error(adapter) -> None:
    session = _session(adapter)
    events: list[ConnectionErrorEvent] = []
    fired = threading.Event()

    def _on_error(event: ConnectionErrorEvent) -> None:
        events.append(event)
        fired.set()

    session.connection_error.subscribe(_on_error)
    try:
        adapter.fail_reads = True
        assert fired.wait(2.0)
        assert isinstance(events[0].exception, TransportReceiveError)
        assert session.channel.is_open is False
    finally:
        session.dispose()
    assert len(session.connection_error) == 0
