"""Abstract transport session to the robot.

A session is created per scan. It discovers peripherals, pairs with and
opens a byte stream to one of them, and exchanges SessionMessages with
the ConnectionManager:

- Discovered devices are reported through `on_devices`
- Inbound bytes are delivered through `on_message` from a reader thread
- Loss of the stream is reported once through `on_lost`

Sessions are pure communication channels and hold no protocol logic.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from ..errors import DiscoveryError
from ..models import DeviceFilter, DeviceInfo, ROBOT_DEVICE_FILTER, SessionMessage

logger = logging.getLogger(__name__)

READ_TIMEOUT = 0.1  # seconds
READ_CHUNK_SIZE = 1024  # bytes

DevicesCallback = Callable[[List[DeviceInfo]], None]
MessageCallback = Callable[[SessionMessage], None]
LostCallback = Callable[[Exception], None]


class PeripheralSession(ABC):
    """Abstract session interface used by the ConnectionManager."""

    @abstractmethod
    def start_discovery(self) -> None:
        """Begin looking for peripherals in the background.

        Results are reported through the devices callback.
        """
        pass

    @abstractmethod
    def connect_peripheral(self, device_id: str, pin: str) -> None:
        """Pair with and open the byte stream to a discovered peripheral.

        Blocks until the stream is open.

        Raises:
            PairingFailedError: PIN exchange rejected
            ConnectFailedError: Stream could not be opened
        """
        pass

    @abstractmethod
    def send_message(self, message: SessionMessage) -> bool:
        """Deliver the message bytes, in order, once.

        Returns:
            True if written, False otherwise
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close the session.

        Safe to call multiple times and from any thread.
        """
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass


class StreamSession(PeripheralSession):
    """Session over a blocking byte stream serviced by a reader thread.

    Subclasses provide discovery and the stream primitives
    (_open/_read/_write/_close).
    """

    def __init__(self,
                 device_filter: DeviceFilter = ROBOT_DEVICE_FILTER,
                 on_devices: Optional[DevicesCallback] = None,
                 on_message: Optional[MessageCallback] = None,
                 on_lost: Optional[LostCallback] = None,
                 chunk_size: int = READ_CHUNK_SIZE):
        self.device_filter = device_filter
        self._on_devices = on_devices
        self._on_message = on_message
        self._on_lost = on_lost
        self._chunk_size = chunk_size

        self._devices: Dict[str, DeviceInfo] = {}
        self._connected = False

        # Threading
        self._active = False
        self._reader_thread: Optional[threading.Thread] = None
        self._discovery_thread: Optional[threading.Thread] = None
        self._stop_discovery = threading.Event()
        self._lock = threading.Lock()

    # Subclass hooks

    @abstractmethod
    def _discover(self) -> List[DeviceInfo]:
        """Return the peripherals currently eligible for connection."""
        pass

    @abstractmethod
    def _open(self, device: DeviceInfo, pin: str) -> None:
        pass

    @abstractmethod
    def _read(self, size: int) -> bytes:
        """Read up to `size` bytes; b'' on timeout. Raise when the stream ends."""
        pass

    @abstractmethod
    def _write(self, data: bytes) -> None:
        pass

    @abstractmethod
    def _close(self) -> None:
        pass

    # Discovery

    def start_discovery(self) -> None:
        if self._discovery_thread and self._discovery_thread.is_alive():
            return
        self._stop_discovery.clear()
        self._discovery_thread = threading.Thread(
            target=self._discovery_loop,
            daemon=True,
            name="DeviceScanner"
        )
        self._discovery_thread.start()

    def _discovery_loop(self) -> None:
        logger.debug("Discovery started")
        try:
            devices = self._discover()
        except DiscoveryError as e:
            logger.error(f"Discovery failed: {e}")
            return
        except Exception as e:
            logger.error(f"Unexpected discovery error: {e}")
            return

        if self._stop_discovery.is_set():
            return

        with self._lock:
            for device in devices:
                self._devices[device.device_id] = device

        if self._on_devices:
            try:
                self._on_devices(list(devices))
            except Exception as e:
                logger.error(f"Error in devices callback: {e}")
        logger.debug(f"Discovery finished, {len(devices)} device(s)")

    def get_devices(self) -> List[DeviceInfo]:
        """Devices reported by the last discovery run."""
        with self._lock:
            return list(self._devices.values())

    # Connection

    def connect_peripheral(self, device_id: str, pin: str) -> None:
        if self._connected:
            logger.warning("Already connected")
            return

        self._stop_discovery.set()
        with self._lock:
            device = self._devices.get(device_id) or DeviceInfo(device_id=device_id)

        self._open(device, pin)

        self._active = True
        self._connected = True
        self._start_reader_thread()
        logger.info(f"Session open to {device_id}")

    def disconnect(self) -> None:
        self._stop_discovery.set()
        if not self._connected and not self._active:
            # Unblock a connect that may still be in progress
            self._close_quietly()
            return

        self._active = False
        self._connected = False

        if (self._reader_thread and self._reader_thread.is_alive()
                and self._reader_thread is not threading.current_thread()):
            self._reader_thread.join(timeout=1.0)

        self._close_quietly()
        logger.info("Session closed")

    def is_connected(self) -> bool:
        return self._connected

    def send_message(self, message: SessionMessage) -> bool:
        if not self._connected:
            logger.warning("Cannot send, session not connected")
            return False

        data = message.to_bytes()
        try:
            self._write(data)
            return True
        except Exception as e:
            logger.error(f"Send error: {e}")
            self._handle_error(e)
            return False

    # Internal methods

    def _start_reader_thread(self) -> None:
        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            daemon=True,
            name="SessionReader"
        )
        self._reader_thread.start()

    def _reader_loop(self) -> None:
        """Read raw bytes and forward them as SessionMessages."""
        logger.debug("Reader thread started")

        while self._active:
            try:
                chunk = self._read(self._chunk_size)
            except Exception as e:
                if self._active:
                    logger.error(f"Read error: {e}")
                    self._handle_error(e)
                break

            if chunk and self._on_message:
                try:
                    self._on_message(SessionMessage.from_bytes(chunk))
                except Exception as e:
                    logger.error(f"Error in message callback: {e}")

        logger.debug("Reader thread exiting")

    def _handle_error(self, error: Exception) -> None:
        """Close the stream after a fatal error and report the loss.

        Does not join threads to avoid deadlock if called from the reader.
        """
        with self._lock:
            if not self._active and not self._connected:
                return
            self._active = False
            self._connected = False

        logger.warning(f"Session lost: {error}")
        self._close_quietly()

        if self._on_lost:
            try:
                self._on_lost(error)
            except Exception as e:
                logger.error(f"Error in session-lost callback: {e}")

    def _close_quietly(self) -> None:
        try:
            self._close()
        except Exception as e:
            logger.error(f"Error closing session: {e}")
