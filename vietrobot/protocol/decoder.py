"""Decoder for messages coming back from the robot.

The MessageDecoder subscribes to the session's inbound messages, undoes
the transport encoding, and keeps an internal buffer to split the byte
stream into length-prefixed frames. Replies to GET_* requests are turned
into SensorReading objects through DECODE_TABLE.

Replies mirror the request layout:
    [len lo, len hi, command id, port, value bytes...]
"""
from __future__ import annotations

import binascii
import logging
import struct
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..models import CommandId, SensorReading, SensorValue, SessionMessage
from .encoder import LENGTH_FIELD_SIZE

logger = logging.getLogger(__name__)

DECODER_MAX_BUFFER_SIZE = 128 * 1024  # 128KB
# Replies are command id + port + at most two value bytes
MAX_REPLY_LENGTH = 16

_KNOWN_COMMAND_IDS = frozenset(int(c) for c in CommandId)


@dataclass(frozen=True)
class DecodeEntry:
    """How to turn the value bytes of one reply into a Python value.

    Attributes:
        fmt: struct format of the value bytes
        convert: Maps the unpacked number to the published value
    """
    fmt: str
    convert: Callable[[int], SensorValue] = int

    @property
    def size(self) -> int:
        return struct.calcsize(self.fmt)


DECODE_TABLE: Dict[CommandId, DecodeEntry] = {
    CommandId.GET_ULTRASONIC: DecodeEntry("<H"),               # cm
    CommandId.GET_GAS: DecodeEntry("<H"),
    CommandId.GET_PHOTORES: DecodeEntry("<H"),
    CommandId.GET_TEMPERATURE: DecodeEntry("<h", lambda v: v / 10.0),  # 0.1 degC
    CommandId.GET_IR_SENSOR: DecodeEntry("<B", bool),
    CommandId.GET_VAR_RES: DecodeEntry("<H"),
    CommandId.GET_BUTTON_STATE: DecodeEntry("<B", bool),
}


def decode_frame(frame: bytes) -> Optional[SensorReading]:
    """Decode one complete frame (length field included).

    Returns:
        SensorReading for a known GET_* reply, None otherwise
    """
    if len(frame) < LENGTH_FIELD_SIZE + 2:
        logger.warning(f"Reply frame too short: {frame.hex(' ')}")
        return None

    try:
        command_id = CommandId(frame[2])
    except ValueError:
        logger.warning(f"Unknown command id in reply: 0x{frame[2]:02X}")
        return None

    entry = DECODE_TABLE.get(command_id)
    if entry is None:
        logger.debug(f"Ignoring {command_id.name} frame from robot")
        return None

    port = frame[3]
    raw = bytes(frame[4:4 + entry.size])
    if len(raw) < entry.size:
        logger.warning(
            f"{command_id.name} reply carries {len(raw)} value bytes, "
            f"expected {entry.size}"
        )
        return None

    (number,) = struct.unpack(entry.fmt, raw)
    return SensorReading(
        command_id=command_id,
        port=port,
        value=entry.convert(number),
        raw=raw,
    )


class MessageDecoder:
    """Turns inbound session messages into sensor readings.

    Runs in the context of the session reader thread, so the work done
    per message is kept to a buffer append and a linear frame scan.
    """

    MAX_BUFFER_SIZE = DECODER_MAX_BUFFER_SIZE

    def __init__(self):
        self._buffer = bytearray()
        self._skipped = 0
        self._latest: Dict[tuple, SensorReading] = {}
        self._reading_callbacks: List[Callable[[SensorReading], None]] = []

        self._buffer_lock = threading.Lock()
        self._callback_lock = threading.Lock()
        self._latest_lock = threading.Lock()

    def on_message(self, message: SessionMessage) -> None:
        """Receive one message from the transport session."""
        try:
            data = message.to_bytes()
        except (ValueError, binascii.Error) as e:
            logger.error(f"Cannot decode {message.encoding} message: {e}")
            return

        logger.debug(f"Received {len(data)} bytes: {data.hex(' ')}")
        self.on_data(data)

    def on_data(self, chunk: bytes) -> None:
        """Feed raw bytes, already stripped of the transport encoding."""
        readings = []
        with self._buffer_lock:
            self._buffer.extend(chunk)
            self._trim_buffer()
            self._skipped = 0

            while True:
                frame = self._try_extract_frame()
                if frame is None:
                    break
                reading = decode_frame(frame)
                if reading is not None:
                    readings.append(reading)
            skipped = self._skipped

        if skipped:
            logger.warning(f"Skipped {skipped} bytes of unframed data")

        for reading in readings:
            with self._latest_lock:
                self._latest[(reading.command_id, reading.port)] = reading
            self._notify_callbacks(reading)

    def _try_extract_frame(self) -> Optional[bytes]:
        """Pop one complete frame from the buffer, if present.

        A header that cannot start a reply (length outside 1..MAX_REPLY_LENGTH
        or an unknown command id) is treated as stray data: one byte is
        dropped and the scan resumes at the next offset.
        """
        while len(self._buffer) >= LENGTH_FIELD_SIZE:
            length = int.from_bytes(self._buffer[:LENGTH_FIELD_SIZE], "little")
            if not 0 < length <= MAX_REPLY_LENGTH or (
                len(self._buffer) > LENGTH_FIELD_SIZE
                and self._buffer[LENGTH_FIELD_SIZE] not in _KNOWN_COMMAND_IDS
            ):
                del self._buffer[0]
                self._skipped += 1
                continue

            end = LENGTH_FIELD_SIZE + length
            if len(self._buffer) < end:
                return None

            frame = bytes(self._buffer[:end])
            del self._buffer[:end]
            return frame
        return None

    def _trim_buffer(self) -> None:
        """Drop everything once the buffer grows past its limit."""
        if len(self._buffer) <= self.MAX_BUFFER_SIZE:
            return
        logger.warning(f"Decoder buffer exceeded {self.MAX_BUFFER_SIZE} bytes, cleared")
        self._buffer.clear()

    def get_latest(self, command_id: CommandId, port: int) -> Optional[SensorReading]:
        """Most recent reading for a sensor, or None if none arrived yet."""
        with self._latest_lock:
            return self._latest.get((CommandId(command_id), port))

    def subscribe_readings(
        self, callback: Callable[[SensorReading], None]
    ) -> Callable[[], None]:
        """Subscribe to decoded readings.

        Returns:
            Unsubscribe function
        """
        with self._callback_lock:
            self._reading_callbacks.append(callback)

        def unsubscribe():
            with self._callback_lock:
                if callback in self._reading_callbacks:
                    self._reading_callbacks.remove(callback)

        return unsubscribe

    def _notify_callbacks(self, reading: SensorReading) -> None:
        with self._callback_lock:
            callbacks = list(self._reading_callbacks)

        for callback in callbacks:
            try:
                callback(reading)
            except Exception as e:
                logger.error(f"Error in reading callback: {e}")

    def clear(self) -> None:
        """Forget buffered bytes and cached readings."""
        with self._buffer_lock:
            self._buffer.clear()
        with self._latest_lock:
            self._latest.clear()

    def get_buffer_size(self) -> int:
        with self._buffer_lock:
            return len(self._buffer)
