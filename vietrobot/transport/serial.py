"""Serial session to the robot through a Bluetooth SPP virtual port.

The operating system owns pairing for these ports (Windows COM ports
backed by BTHENUM, BlueZ /dev/rfcommN bindings), so the PIN is not used
here and the device class cannot be checked.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import serial

from ..errors import ConnectFailedError
from ..models import DeviceInfo
from .base import StreamSession, READ_TIMEOUT
from .device_finder import find_serial_devices

logger = logging.getLogger(__name__)

CONNECTION_BAUD = 115_200


class SerialSession(StreamSession):
    """Session over a pyserial port."""

    def __init__(self, *args,
                 baudrate: int = CONNECTION_BAUD,
                 timeout: float = READ_TIMEOUT,
                 **kwargs):
        super().__init__(*args, **kwargs)
        self._baudrate = baudrate
        self._timeout = timeout
        self._serial: Optional[serial.Serial] = None

    def _discover(self) -> List[DeviceInfo]:
        return find_serial_devices()

    def _open(self, device: DeviceInfo, pin: str) -> None:
        port = device.port or device.device_id
        try:
            self._serial = serial.Serial(
                port=port,
                baudrate=self._baudrate,
                timeout=self._timeout,
            )
            self._serial.reset_input_buffer()
            self._serial.reset_output_buffer()
        except serial.SerialException as e:
            self._serial = None
            raise ConnectFailedError(f"Failed to open {port}: {e}") from e

        logger.info(f"Connected to robot on {port} @ {self._baudrate} baud")

    def _read(self, size: int) -> bytes:
        port = self._serial
        if port is None:
            raise ConnectionError("Serial port closed")
        return port.read(size)

    def _write(self, data: bytes) -> None:
        port = self._serial
        if port is None:
            raise ConnectionError("Serial port closed")
        port.write(data)
        port.flush()

    def _close(self) -> None:
        port, self._serial = self._serial, None
        if port is not None:
            port.close()
