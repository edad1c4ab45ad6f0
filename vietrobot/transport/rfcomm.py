"""RFCOMM session to the robot using Python Bluetooth sockets.

Discovery and PIN pairing go through BlueZ's bluetoothctl; the byte
stream itself is an AF_BLUETOOTH/BTPROTO_RFCOMM socket. The socket timeout
bounds writes; reads wait for data with select() so the reader thread
stays responsive without short socket timeouts.
"""
from __future__ import annotations

import logging
import select
import socket
from typing import List, Optional

from ..errors import ConnectFailedError
from ..models import DeviceInfo
from .base import StreamSession, READ_TIMEOUT
from .device_finder import find_devices, pair_device
from .device_finder.core import DEFAULT_SCAN_SECONDS

logger = logging.getLogger(__name__)

RFCOMM_CHANNEL = 1  # Serial Port Profile
CONNECT_TIMEOUT = 10.0  # seconds
WRITE_TIMEOUT = 3.0  # seconds


class RFCOMMSession(StreamSession):
    """Bluetooth Classic session over an RFCOMM socket.

    Example:
        >>> session = RFCOMMSession(on_devices=print)
        >>> session.start_discovery()
        >>> session.connect_peripheral("00:11:22:33:44:55", "1234")
    """

    def __init__(self, *args,
                 channel: int = RFCOMM_CHANNEL,
                 scan_seconds: int = DEFAULT_SCAN_SECONDS,
                 connect_timeout: float = CONNECT_TIMEOUT,
                 read_timeout: float = READ_TIMEOUT,
                 write_timeout: float = WRITE_TIMEOUT,
                 **kwargs):
        super().__init__(*args, **kwargs)
        self._channel = channel
        self._scan_seconds = scan_seconds
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout
        self._socket: Optional[socket.socket] = None

    def _discover(self) -> List[DeviceInfo]:
        return find_devices(
            device_filter=self.device_filter,
            scan_seconds=self._scan_seconds,
            stop_event=self._stop_discovery,
        )

    def _open(self, device: DeviceInfo, pin: str) -> None:
        try:
            af_bluetooth = socket.AF_BLUETOOTH
            btproto_rfcomm = socket.BTPROTO_RFCOMM
        except AttributeError as e:
            raise ConnectFailedError(
                "This Python build does not expose Bluetooth socket APIs "
                "(AF_BLUETOOTH/BTPROTO_RFCOMM)."
            ) from e

        pair_device(device.device_id, pin)

        try:
            bt_socket = socket.socket(af_bluetooth, socket.SOCK_STREAM, btproto_rfcomm)
        except OSError as e:
            raise ConnectFailedError(f"Could not create RFCOMM socket: {e}") from e

        bt_socket.settimeout(self._connect_timeout)
        self._socket = bt_socket
        try:
            bt_socket.connect((device.device_id, self._channel))
        except OSError as e:
            self._socket = None
            bt_socket.close()
            raise ConnectFailedError(
                f"RFCOMM connect failed for {device.device_id} "
                f"on channel {self._channel}: {e}"
            ) from e

        bt_socket.settimeout(self._write_timeout)
        logger.info(f"RFCOMM connected to {device.device_id} channel {self._channel}")

    def _read(self, size: int) -> bytes:
        sock = self._socket
        if sock is None:
            raise ConnectionError("RFCOMM socket closed")
        readable, _, _ = select.select([sock], [], [], self._read_timeout)
        if not readable:
            return b""
        try:
            data = sock.recv(size)
        except socket.timeout:
            return b""
        if not data:
            raise ConnectionError("RFCOMM connection closed by peer")
        return data

    def _write(self, data: bytes) -> None:
        sock = self._socket
        if sock is None:
            raise ConnectionError("RFCOMM socket closed")
        sock.sendall(data)

    def _close(self) -> None:
        sock, self._socket = self._socket, None
        if sock is not None:
            sock.close()
