"""Connection lifecycle of one robot.

The ConnectionManager owns the transport session, the rate limiter and
the polling scheduler, and is the only writer of the ConnectionState:

    DISCONNECTED --scan()--> SCANNING --connect(id)--> CONNECTING --> CONNECTED
         ^                                                |              |
         +---------- failure / disconnect() / session lost +--------------+

Sends made while not connected, or denied by the rate limiter, are
dropped without raising.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from ..errors import ConnectFailedError, PairingFailedError, TransportUnavailableError
from ..models import (
    CommandFrame,
    ConnectionState,
    DeviceFilter,
    DeviceInfo,
    PAIRING_PIN,
    ROBOT_DEVICE_FILTER,
    SendOutcome,
    SessionMessage,
)
from ..transport.base import PeripheralSession
from ..transport.rfcomm import RFCOMMSession
from .polling import DEFAULT_POLL_INTERVAL, PollingScheduler
from .rate_limiter import BT_SEND_RATE_MAX, RateLimiter

logger = logging.getLogger(__name__)

SessionFactory = Callable[..., PeripheralSession]


class ConnectionManager:
    """Drives scan/connect/disconnect and gates every outbound frame.

    Example:
        >>> manager = ConnectionManager(on_devices=print)
        >>> manager.scan()
        >>> # ... pick a reported device
        >>> manager.connect("00:11:22:33:44:55")
        >>> manager.send(CommandEncoder.motor_power(0, 75))
        <SendOutcome.SENT: 'sent'>
        >>> manager.disconnect()
    """

    def __init__(self,
                 session_factory: SessionFactory = RFCOMMSession,
                 device_filter: DeviceFilter = ROBOT_DEVICE_FILTER,
                 pin: str = PAIRING_PIN,
                 max_send_rate: int = BT_SEND_RATE_MAX,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 on_devices: Optional[Callable[[List[DeviceInfo]], None]] = None,
                 on_poll: Optional[Callable[[int], None]] = None,
                 rate_limiter: Optional[RateLimiter] = None):
        """Initialize connection manager.

        Args:
            session_factory: Creates a PeripheralSession per scan; called with
                device_filter, on_devices, on_message and on_lost keywords
            device_filter: Which discovered devices are eligible
            pin: Pairing PIN
            max_send_rate: Rate limiter ceiling (sends per second)
            poll_interval: Seconds between polling ticks
            on_devices: Receives discovered devices during scan()
            on_poll: Called on every polling tick with the poll counter
            rate_limiter: Pre-built limiter (overrides max_send_rate)
        """
        self._session_factory = session_factory
        self._device_filter = device_filter
        self._pin = pin
        self._on_devices = on_devices

        self._state = ConnectionState.DISCONNECTED
        self._session: Optional[PeripheralSession] = None
        self._device_id: Optional[str] = None
        self._generation = 0

        self._rate_limiter = rate_limiter or RateLimiter(max_rate=max_send_rate)
        self._poller = PollingScheduler(
            is_connected=self.is_connected,
            on_tick=on_poll,
            interval=poll_interval,
        )

        self._message_callbacks: List[Callable[[SessionMessage], None]] = []
        self._state_callbacks: List[Callable[[ConnectionState], None]] = []

        # State transitions; writes to the session are serialized separately
        self._lock = threading.RLock()
        self._send_lock = threading.Lock()
        self._callback_lock = threading.Lock()

    # --- State ---

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def poller(self) -> PollingScheduler:
        return self._poller

    @property
    def poll_counter(self) -> int:
        return self._poller.poll_counter

    @property
    def device_id(self) -> Optional[str]:
        """Device of the current connection, None when not connected."""
        with self._lock:
            return self._device_id

    def is_connected(self) -> bool:
        """True only while CONNECTED with a live session."""
        with self._lock:
            return (self._state == ConnectionState.CONNECTED
                    and self._session is not None
                    and self._session.is_connected())

    def set_devices_callback(
        self, callback: Optional[Callable[[List[DeviceInfo]], None]]
    ) -> None:
        self._on_devices = callback

    # --- Lifecycle ---

    def scan(self) -> None:
        """Start a new discovery session, dropping any existing one.

        Raises:
            TransportUnavailableError: The session could not be created
        """
        self._teardown()

        with self._lock:
            self._generation += 1
            generation = self._generation
            try:
                session = self._session_factory(
                    device_filter=self._device_filter,
                    on_devices=lambda devices: self._on_session_devices(generation, devices),
                    on_message=lambda message: self._on_session_message(generation, message),
                    on_lost=lambda error: self._on_session_lost(generation, error),
                )
            except (OSError, ImportError) as e:
                raise TransportUnavailableError(f"Could not create transport session: {e}") from e
            self._session = session
            self._set_state(ConnectionState.SCANNING)

        logger.info("Scanning for robots")
        session.start_discovery()

    def connect(self, device_id: str) -> None:
        """Pair with and connect to a device reported by scan().

        Raises:
            PairingFailedError: PIN exchange failed
            ConnectFailedError: No scan session, the stream did not open,
                or a different device is already connected
        """
        with self._lock:
            session = self._session
            generation = self._generation
            if session is None:
                raise ConnectFailedError("No scan session; call scan() first")
            if self._state == ConnectionState.CONNECTED:
                if device_id != self._device_id:
                    raise ConnectFailedError(
                        f"Already connected to {self._device_id}; "
                        f"disconnect before connecting to {device_id}"
                    )
                logger.warning(f"Already connected to {device_id}")
                return
            self._set_state(ConnectionState.CONNECTING)

        logger.info(f"Connecting to {device_id}")
        try:
            session.connect_peripheral(device_id, self._pin)
        except (PairingFailedError, ConnectFailedError) as e:
            logger.error(f"Connect to {device_id} failed: {e}")
            self._teardown(generation)
            raise
        except Exception as e:
            logger.error(f"Unexpected error connecting to {device_id}: {e}")
            self._teardown(generation)
            raise ConnectFailedError(f"Connect to {device_id} failed: {e}") from e

        with self._lock:
            cancelled = (self._generation != generation
                         or self._state != ConnectionState.CONNECTING)
            if not cancelled:
                self._rate_limiter.reset()
                self._device_id = device_id
                self._set_state(ConnectionState.CONNECTED)

        if cancelled:
            session.disconnect()
            raise ConnectFailedError(f"Connect to {device_id} was cancelled")

        self._poller.start()
        logger.info(f"Connected to {device_id}")

    def disconnect(self) -> None:
        """Close the session and stop polling. Safe to call at any time."""
        self._teardown()

    def _teardown(self, generation: Optional[int] = None, wait: bool = True) -> None:
        """Return to DISCONNECTED.

        With `generation`, only tears down if that session is still current.
        Threads are joined outside the state lock.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            session, self._session = self._session, None
            self._device_id = None
            self._rate_limiter.reset()
            self._set_state(ConnectionState.DISCONNECTED)

        self._poller.stop(wait=wait)
        if session is not None:
            session.disconnect()

    # --- Sending ---

    def send(self, frame: CommandFrame, use_limiter: bool = True) -> SendOutcome:
        """Send one frame to the robot.

        Never raises for a missing connection or a full rate window;
        the frame is dropped instead.
        """
        with self._lock:
            session = self._session
            if not self.is_connected():
                return SendOutcome.NOT_CONNECTED
            if use_limiter and not self._rate_limiter.okay_to_send():
                return SendOutcome.DROPPED

        message = SessionMessage.from_bytes(bytes(frame))
        with self._send_lock:
            sent = session.send_message(message)

        if not sent:
            return SendOutcome.NOT_CONNECTED
        logger.debug(f"Sent frame {frame.hex()}")
        return SendOutcome.SENT

    # --- Session callbacks ---

    def _on_session_devices(self, generation: int, devices: List[DeviceInfo]) -> None:
        if generation != self._generation:
            return
        logger.info(f"Discovered {len(devices)} robot(s)")
        if self._on_devices:
            self._on_devices(devices)

    def _on_session_message(self, generation: int, message: SessionMessage) -> None:
        if generation != self._generation:
            return
        with self._callback_lock:
            callbacks = list(self._message_callbacks)

        for callback in callbacks:
            try:
                callback(message)
            except Exception as e:
                logger.error(f"Error in message callback: {e}")

    def _on_session_lost(self, generation: int, error: Exception) -> None:
        logger.warning(f"Transport lost: {error}")
        # May run on the reader or a sending thread; do not join the poller
        self._teardown(generation, wait=False)

    # --- Subscriptions ---

    def subscribe_messages(
        self, callback: Callable[[SessionMessage], None]
    ) -> Callable[[], None]:
        """Subscribe to inbound session messages.

        Returns:
            Unsubscribe function
        """
        with self._callback_lock:
            self._message_callbacks.append(callback)

        def unsubscribe():
            with self._callback_lock:
                if callback in self._message_callbacks:
                    self._message_callbacks.remove(callback)

        return unsubscribe

    def subscribe_state(
        self, callback: Callable[[ConnectionState], None]
    ) -> Callable[[], None]:
        """Subscribe to connection state changes.

        Returns:
            Unsubscribe function
        """
        with self._callback_lock:
            self._state_callbacks.append(callback)

        def unsubscribe():
            with self._callback_lock:
                if callback in self._state_callbacks:
                    self._state_callbacks.remove(callback)

        return unsubscribe

    def _set_state(self, state: ConnectionState) -> None:
        """Must be called with self._lock held."""
        if state == self._state:
            return
        logger.debug(f"Connection state {self._state.value} -> {state.value}")
        self._state = state

        with self._callback_lock:
            callbacks = list(self._state_callbacks)

        for callback in callbacks:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in state callback: {e}")
