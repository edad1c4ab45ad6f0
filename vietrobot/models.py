"""Immutable data models for the VietRobot driver.

All models are frozen dataclasses or enums so they can be shared freely
between the caller, the polling thread and the transport reader thread.
"""
from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional, Union

# Fixed pairing PIN for the whole device family
PAIRING_PIN = "1234"

# Bluetooth Class-of-Device "Uncategorized" major class used by the robot
ROBOT_MAJOR_DEVICE_CLASS = 31
ROBOT_MINOR_DEVICE_CLASS = 0

TRANSPORT_ENCODING = "base64"


class ConnectionState(Enum):
    """Connection lifecycle states of one driver instance."""
    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SendOutcome(Enum):
    """Result of ConnectionManager.send()."""
    SENT = "sent"
    DROPPED = "dropped"
    NOT_CONNECTED = "not_connected"


class CommandId(IntEnum):
    """Top-level command identifiers (frame offset 2)."""
    PUT_LEDRGB = 0x00
    PUT_LEDTRAFFIC = 0x01
    PUT_DCMOTOR = 0x02
    PUT_LCD = 0x03
    PUT_BUZZER = 0x04
    PUT_SERVO = 0x05
    GET_ULTRASONIC = 0x06
    GET_GAS = 0x07
    GET_PHOTORES = 0x08
    GET_TEMPERATURE = 0x09
    GET_IR_SENSOR = 0x0A
    GET_VAR_RES = 0x0B
    GET_BUTTON_STATE = 0x0C

    @property
    def is_query(self) -> bool:
        return self.name.startswith("GET_")


class MotorSubCommand(IntEnum):
    """Sub-opcodes of PUT_DCMOTOR (first payload byte)."""
    PORT_DIRECTION = 0x00
    PORT_POWER = 0x01
    PORT_FULL_CTRL = 0x02
    ALL_PORTS_FULL_CTRL = 0x03


class Orientation(IntEnum):
    """DC motor rotation direction."""
    CW = 0x00
    CCW = 0x01


class LedState(IntEnum):
    """State of one traffic-light LED."""
    OFF = 0x00
    ON = 0x01


@dataclass(frozen=True)
class DeviceFilter:
    """Bluetooth Class-of-Device filter used during discovery.

    Attributes:
        major_device_class: Major device class (bits 8-12 of the CoD)
        minor_device_class: Minor device class (bits 2-7 of the CoD)
    """
    major_device_class: int = ROBOT_MAJOR_DEVICE_CLASS
    minor_device_class: int = ROBOT_MINOR_DEVICE_CLASS

    def matches(self, device_class: Optional[int]) -> bool:
        """Check a 24-bit Class-of-Device value against this filter.

        Devices that did not report a class never match.
        """
        if device_class is None:
            return False
        major = (device_class >> 8) & 0x1F
        minor = (device_class >> 2) & 0x3F
        return (major == self.major_device_class
                and minor == self.minor_device_class)


ROBOT_DEVICE_FILTER = DeviceFilter()


@dataclass(frozen=True)
class DeviceInfo:
    """One peripheral found during a scan.

    Attributes:
        device_id: Identifier passed back to connect() (Bluetooth address
            for RFCOMM, port path for serial)
        name: Human readable name, if the device advertised one
        device_class: Bluetooth Class-of-Device, or None if unknown
        port: Serial port path for SPP sessions, None otherwise
    """
    device_id: str
    name: str = ""
    device_class: Optional[int] = None
    port: Optional[str] = None


@dataclass(frozen=True)
class CommandFrame:
    """One complete wire frame. Built fresh for every send."""
    data: bytes

    @property
    def length(self) -> int:
        """Value of the little-endian length field."""
        return int.from_bytes(self.data[0:2], "little")

    @property
    def command_id(self) -> int:
        return self.data[2]

    @property
    def payload(self) -> bytes:
        return self.data[3:]

    def __bytes__(self) -> bytes:
        return self.data

    def __len__(self) -> int:
        return len(self.data)

    def hex(self) -> str:
        return self.data.hex(" ")


@dataclass(frozen=True)
class SessionMessage:
    """Message exchanged with a transport session.

    Bytes travel as text in `message`, encoded as named by `encoding`.
    """
    message: str
    encoding: str = TRANSPORT_ENCODING

    @classmethod
    def from_bytes(cls, data: bytes) -> SessionMessage:
        return cls(message=base64.b64encode(data).decode("ascii"))

    def to_bytes(self) -> bytes:
        if self.encoding != TRANSPORT_ENCODING:
            raise ValueError(f"Unsupported message encoding: {self.encoding}")
        return base64.b64decode(self.message, validate=True)


SensorValue = Union[int, float, bool]


@dataclass(frozen=True)
class SensorReading:
    """Decoded reply to a GET_* request.

    Attributes:
        command_id: The GET_* command this reading answers
        port: Robot port the sensor is attached to
        value: Decoded value (int, float or bool depending on the sensor)
        raw: Raw value bytes as received
        timestamp: Unix timestamp when the reading was decoded
    """
    command_id: CommandId
    port: int
    value: SensorValue
    raw: bytes = b""
    timestamp: float = field(default_factory=time.time)
