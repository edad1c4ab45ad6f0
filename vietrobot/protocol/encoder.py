"""Command encoder for the VietRobot binary protocol.

Converts command ids and argument bytes into wire frames.
Pure functions with no side effects.

Frame layout:
    offset 0-1: length (uint16 little-endian, bytes following the field)
    offset 2:   command id
    offset 3+:  sub-opcode and arguments, one unsigned byte each
"""
from __future__ import annotations

from typing import Iterable, Sequence

from ..errors import EncodingOverflowError
from ..models import (
    CommandFrame,
    CommandId,
    LedState,
    MotorSubCommand,
    Orientation,
)

LENGTH_FIELD_SIZE = 2
MAX_FRAME_LENGTH = 0xFFFF
# Length counts the command id byte plus the payload
MAX_PAYLOAD_SIZE = MAX_FRAME_LENGTH - 1

SERVO_MIN_ANGLE = 0
SERVO_MAX_ANGLE = 180


def encode(command_id: int, payload: Iterable[int] = ()) -> CommandFrame:
    """Build a wire frame.

    Args:
        command_id: One of CommandId (any value 0-255 is accepted)
        payload: Sub-opcode and argument bytes

    Returns:
        Immutable CommandFrame

    Raises:
        EncodingOverflowError: Payload too large for the length field
        ValueError: Command id or a payload byte outside 0-255

    Examples:
        >>> encode(CommandId.PUT_LEDRGB, [0xFF, 0x00, 0x80]).hex()
        '04 00 00 ff 00 80'
    """
    body = bytes([_check_byte(command_id, "command id")])
    payload_bytes = bytes(_check_byte(value, "payload byte") for value in payload)

    if len(payload_bytes) > MAX_PAYLOAD_SIZE:
        raise EncodingOverflowError(
            f"Payload of {len(payload_bytes)} bytes does not fit the 16-bit "
            f"length field (max {MAX_PAYLOAD_SIZE})",
            payload_length=len(payload_bytes),
        )

    body += payload_bytes
    return CommandFrame(len(body).to_bytes(LENGTH_FIELD_SIZE, "little") + body)


def _check_byte(value: int, what: str) -> int:
    value = int(value)
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{what} out of range 0-255: {value}")
    return value


class CommandEncoder:
    """Builders for every command family the robot understands.

    Arguments are expected to be validated by the caller; out-of-range
    bytes raise ValueError instead of being truncated.
    """

    @staticmethod
    def led_rgb(red: int, green: int, blue: int) -> CommandFrame:
        """Protocol: PUT_LEDRGB <r> <g> <b>"""
        return encode(CommandId.PUT_LEDRGB, [red, green, blue])

    @staticmethod
    def led_traffic(port: int, red: LedState, yellow: LedState,
                    green: LedState) -> CommandFrame:
        """Protocol: PUT_LEDTRAFFIC <port> <green> <yellow> <red>

        The firmware expects the lamps bottom-up, green first.
        """
        return encode(CommandId.PUT_LEDTRAFFIC, [port, green, yellow, red])

    @staticmethod
    def motor_direction(port: int, orientation: Orientation) -> CommandFrame:
        """Protocol: PUT_DCMOTOR PORT_DIRECTION <port> <orientation>"""
        return encode(CommandId.PUT_DCMOTOR,
                      [MotorSubCommand.PORT_DIRECTION, port, orientation])

    @staticmethod
    def motor_power(port: int, power: int) -> CommandFrame:
        """Protocol: PUT_DCMOTOR PORT_POWER <port> <power>"""
        return encode(CommandId.PUT_DCMOTOR,
                      [MotorSubCommand.PORT_POWER, port, power])

    @staticmethod
    def motor_full_control(port: int, orientation: Orientation,
                           power: int) -> CommandFrame:
        """Protocol: PUT_DCMOTOR PORT_FULL_CTRL <port> <orientation> <power>"""
        return encode(CommandId.PUT_DCMOTOR,
                      [MotorSubCommand.PORT_FULL_CTRL, port, orientation, power])

    @staticmethod
    def all_motors_full_control(orientation: Orientation,
                                power: int) -> CommandFrame:
        """Protocol: PUT_DCMOTOR ALL_PORTS_FULL_CTRL <orientation> <power>"""
        return encode(CommandId.PUT_DCMOTOR,
                      [MotorSubCommand.ALL_PORTS_FULL_CTRL, orientation, power])

    @staticmethod
    def servo_angles(port: int, angles: Sequence[float]) -> CommandFrame:
        """Protocol: PUT_SERVO <port> <angle1> <angle2> <angle3>

        Angles are clamped to the servo range 0-180 degrees.
        """
        clamped = [
            int(max(SERVO_MIN_ANGLE, min(SERVO_MAX_ANGLE, angle)))
            for angle in angles
        ]
        return encode(CommandId.PUT_SERVO, [port] + clamped)

    @staticmethod
    def sensor_request(command_id: CommandId, port: int) -> CommandFrame:
        """Protocol: GET_* <port>"""
        command_id = CommandId(command_id)
        if not command_id.is_query:
            raise ValueError(f"Not a sensor query: {command_id.name}")
        return encode(command_id, [port])
