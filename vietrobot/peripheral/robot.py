"""Robot abstraction layer.

Wires the connection, the protocol encoder/decoder and request
correlation together behind the interface the host (a block editor or
any other caller) talks to.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, TimeoutError as FutureTimeoutError
from typing import Iterable, List, Optional, Set, Tuple

from ..models import (
    CommandFrame,
    CommandId,
    ConnectionState,
    DeviceInfo,
    LedState,
    Orientation,
    SendOutcome,
    SensorReading,
    SensorValue,
)
from ..protocol import CommandEncoder, MessageDecoder, PendingRequests
from ..transport.rfcomm import RFCOMMSession
from .connection import ConnectionManager, SessionFactory
from .polling import DEFAULT_POLL_INTERVAL
from .rate_limiter import BT_SEND_RATE_MAX

logger = logging.getLogger(__name__)

EXTENSION_ID = "vietrobot"


class VietRobot:
    """High-level interface to one VietRobot controller.

    This class acts as a facade, managing:
    1. The connection lifecycle and rate-limited sending (ConnectionManager)
    2. Reply decoding and cached sensor values (MessageDecoder)
    3. Correlation of queries with their replies (PendingRequests)

    Every command method performs exactly one encode and one rate-limited
    send. Arguments are expected to be validated by the caller.

    The host passed to attach() must provide
    ``report_devices(devices: List[DeviceInfo])``.
    """

    def __init__(self,
                 session_factory: SessionFactory = RFCOMMSession,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 max_send_rate: int = BT_SEND_RATE_MAX,
                 extension_id: str = EXTENSION_ID):
        """Initialize robot driver.

        Args:
            session_factory: Transport session class or factory
            poll_interval: Seconds between sensor refresh cycles
            max_send_rate: Outbound messages admitted per second
            extension_id: Identifier announced to the host
        """
        self.extension_id = extension_id
        self._host = None

        self._decoder = MessageDecoder()
        self._pending = PendingRequests()
        self._connection = ConnectionManager(
            session_factory=session_factory,
            max_send_rate=max_send_rate,
            poll_interval=poll_interval,
            on_devices=self._report_devices,
            on_poll=self._poll_values,
        )

        # Sensors the caller has queried; refreshed on every polling tick
        self._watched: Set[Tuple[CommandId, int]] = set()
        self._watched_lock = threading.Lock()

        self._connection.subscribe_messages(self._decoder.on_message)
        self._decoder.subscribe_readings(self._pending.resolve)
        self._connection.subscribe_state(self._on_state_changed)

    # --- Host lifecycle ---

    def attach(self, host) -> None:
        """Register the host that receives discovered devices."""
        self._host = host
        logger.debug(f"Attached to host {host!r} as '{self.extension_id}'")

    def on_stop_all(self) -> None:
        """Host-wide stop: halt every motor, bypassing the rate limiter."""
        frame = CommandEncoder.all_motors_full_control(Orientation.CW, 0)
        self._connection.send(frame, use_limiter=False)

    def _report_devices(self, devices: List[DeviceInfo]) -> None:
        if self._host is None:
            logger.debug(f"No host attached, {len(devices)} device(s) not reported")
            return
        self._host.report_devices(devices)

    # --- Connection ---

    def scan(self) -> None:
        self._connection.scan()

    def connect(self, device_id: str) -> None:
        self._connection.connect(device_id)

    def disconnect(self) -> None:
        self._connection.disconnect()

    def is_connected(self) -> bool:
        return self._connection.is_connected()

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def decoder(self) -> MessageDecoder:
        return self._decoder

    @property
    def poll_counter(self) -> int:
        return self._connection.poll_counter

    def send(self, frame: CommandFrame, use_limiter: bool = True) -> SendOutcome:
        return self._connection.send(frame, use_limiter=use_limiter)

    def _on_state_changed(self, state: ConnectionState) -> None:
        if state == ConnectionState.DISCONNECTED:
            self._pending.cancel_all()
            self._decoder.clear()

    # --- Actuators ---

    def set_led_rgb(self, red: int, green: int, blue: int) -> SendOutcome:
        return self.send(CommandEncoder.led_rgb(red, green, blue))

    def set_led_traffic(self, port: int, red: LedState, yellow: LedState,
                        green: LedState) -> SendOutcome:
        return self.send(CommandEncoder.led_traffic(port, red, yellow, green))

    def motor_set_direction(self, port: int, orientation: Orientation) -> SendOutcome:
        return self.send(CommandEncoder.motor_direction(port, orientation))

    def motor_set_power(self, port: int, power: int) -> SendOutcome:
        return self.send(CommandEncoder.motor_power(port, power))

    def motor_full_control(self, port: int, orientation: Orientation,
                           power: int) -> SendOutcome:
        return self.send(CommandEncoder.motor_full_control(port, orientation, power))

    def all_motors_full_control(self, orientation: Orientation,
                                power: int) -> SendOutcome:
        return self.send(CommandEncoder.all_motors_full_control(orientation, power))

    def servo_angles(self, port: int, angle_1: float, angle_2: float,
                     angle_3: float) -> SendOutcome:
        return self.send(CommandEncoder.servo_angles(port, [angle_1, angle_2, angle_3]))

    # --- Sensors ---

    def query(self, command_id: CommandId, port: int,
              timeout: Optional[float] = None) -> Optional[SensorValue]:
        """Request a sensor value.

        The sensor is added to the polling set so its cached value keeps
        refreshing.

        Args:
            command_id: A GET_* command
            port: Robot port of the sensor
            timeout: If given, wait up to this many seconds for the reply

        Returns:
            The fresh value when waiting succeeded, otherwise the latest
            cached value (None if nothing arrived yet)
        """
        command_id = CommandId(command_id)
        frame = CommandEncoder.sensor_request(command_id, port)
        with self._watched_lock:
            self._watched.add((command_id, port))

        if timeout is None:
            self.send(frame)
            return self._cached_value(command_id, port)

        seq, future = self._pending.register(command_id, port)
        if self.send(frame) != SendOutcome.SENT:
            self._pending.discard(seq)
            return self._cached_value(command_id, port)

        try:
            reading = future.result(timeout=timeout)
        except (FutureTimeoutError, CancelledError):
            self._pending.discard(seq)
            logger.debug(f"No reply to {command_id.name} port {port} within {timeout}s")
            return self._cached_value(command_id, port)
        return reading.value

    def get_reading(self, command_id: CommandId, port: int) -> Optional[SensorReading]:
        """Latest decoded reading for a sensor, without sending anything."""
        return self._decoder.get_latest(command_id, port)

    def _cached_value(self, command_id: CommandId, port: int) -> Optional[SensorValue]:
        reading = self._decoder.get_latest(command_id, port)
        return reading.value if reading else None

    def button_pressed(self, port: int, timeout: Optional[float] = None) -> Optional[bool]:
        return self.query(CommandId.GET_BUTTON_STATE, port, timeout)

    def ultrasonic_distance(self, port: int, timeout: Optional[float] = None) -> Optional[int]:
        """Distance in centimetres."""
        return self.query(CommandId.GET_ULTRASONIC, port, timeout)

    def gas_level(self, port: int, timeout: Optional[float] = None) -> Optional[int]:
        return self.query(CommandId.GET_GAS, port, timeout)

    def light_level(self, port: int, timeout: Optional[float] = None) -> Optional[int]:
        return self.query(CommandId.GET_PHOTORES, port, timeout)

    def temperature(self, port: int, timeout: Optional[float] = None) -> Optional[float]:
        """Temperature in degrees Celsius."""
        return self.query(CommandId.GET_TEMPERATURE, port, timeout)

    def ir_detected(self, port: int, timeout: Optional[float] = None) -> Optional[bool]:
        return self.query(CommandId.GET_IR_SENSOR, port, timeout)

    def variable_resistance(self, port: int, timeout: Optional[float] = None) -> Optional[int]:
        return self.query(CommandId.GET_VAR_RES, port, timeout)

    # --- Polling ---

    def watched_sensors(self) -> List[Tuple[CommandId, int]]:
        with self._watched_lock:
            return sorted(self._watched)

    def unwatch(self, sensors: Iterable[Tuple[CommandId, int]]) -> None:
        with self._watched_lock:
            for sensor in sensors:
                self._watched.discard(sensor)

    def _poll_values(self, counter: int) -> None:
        """Refresh every watched sensor through the normal send path."""
        for command_id, port in self.watched_sensors():
            self.send(CommandEncoder.sensor_request(command_id, port))
