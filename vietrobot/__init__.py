"""VietRobot driver - Bluetooth peripheral driver for the VietRobot Edu controller."""

from .models import (
    CommandFrame,
    CommandId,
    ConnectionState,
    DeviceFilter,
    DeviceInfo,
    LedState,
    MotorSubCommand,
    Orientation,
    SendOutcome,
    SensorReading,
    SessionMessage,
)
from .peripheral import ConnectionManager, VietRobot
from .protocol import CommandEncoder, MessageDecoder, encode

__all__ = [
    "CommandFrame",
    "CommandId",
    "ConnectionState",
    "DeviceFilter",
    "DeviceInfo",
    "LedState",
    "MotorSubCommand",
    "Orientation",
    "SendOutcome",
    "SensorReading",
    "SessionMessage",
    "ConnectionManager",
    "VietRobot",
    "CommandEncoder",
    "MessageDecoder",
    "encode",
]
