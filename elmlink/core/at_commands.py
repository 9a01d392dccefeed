"""ELM327 AT command vocabulary and SAE J1979 service modes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class Mode(IntEnum):
    SHOW_CURRENT_DATA = 0x01
    SHOW_FREEZE_FRAME_DATA = 0x02
    SHOW_STORED_DTCS = 0x03
    CLEAR_DTCS = 0x04
    OXYGEN_SENSOR_MONITORING = 0x05
    ON_BOARD_MONITORING = 0x06
    SHOW_PENDING_DTCS = 0x07
    CONTROL_ON_BOARD_SYSTEM = 0x08
    REQUEST_VEHICLE_INFORMATION = 0x09
    PERMANENT_DTCS = 0x0A
    READ_DATA_BY_IDENTIFIER = 0x22


RESPONSE_MODE_OFFSET = 0x40


@dataclass(frozen=True)
class ATCommand:
    name: str
    command: str

    def __str__(self) -> str:
        return self.command


RESET_DEVICE = ATCommand("reset", "ATZ")
ECHO_OFF = ATCommand("echo off", "ATE0")
LINEFEEDS_OFF = ATCommand("linefeeds off", "ATL0")
HEADERS_OFF = ATCommand("headers off", "ATH0")
PRINT_SPACES_OFF = ATCommand("spaces off", "ATS0")
SET_PROTOCOL_AUTO = ATCommand("protocol auto", "ATSP0")
CLOSE_PROTOCOL = ATCommand("close protocol", "ATPC")
SET_HEADER = ATCommand("set header", "ATSH")
READ_VOLTAGE = ATCommand("read voltage", "ATRV")
DESCRIBE_PROTOCOL_NUMBER = ATCommand("describe protocol number", "ATDPN")
VERSION = ATCommand("version", "ATI")

INIT_SEQUENCE: tuple[ATCommand, ...] = (
    RESET_DEVICE,
    ECHO_OFF,
    LINEFEEDS_OFF,
    HEADERS_OFF,
    PRINT_SPACES_OFF,
    SET_PROTOCOL_AUTO,
)
