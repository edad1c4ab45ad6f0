"""In-memory transport session used by the connection and robot tests."""

import threading
from typing import List, Optional

from vietrobot.models import DeviceInfo, SessionMessage
from vietrobot.transport.base import PeripheralSession


class FakeSession(PeripheralSession):
    """Records everything the ConnectionManager asks of it."""

    def __init__(self, device_filter=None, on_devices=None, on_message=None,
                 on_lost=None, connect_error: Optional[Exception] = None,
                 connect_gate: Optional[threading.Event] = None):
        self.device_filter = device_filter
        self.on_devices = on_devices
        self.on_message = on_message
        self.on_lost = on_lost
        self.connect_error = connect_error
        self.connect_gate = connect_gate
        self.connect_entered = threading.Event()

        self.connected = False
        self.discovery_started = False
        self.connect_args = None
        self.disconnect_calls = 0
        self.sent: List[bytes] = []

    def start_discovery(self) -> None:
        self.discovery_started = True

    def connect_peripheral(self, device_id: str, pin: str) -> None:
        self.connect_args = (device_id, pin)
        self.connect_entered.set()
        if self.connect_gate is not None:
            self.connect_gate.wait(timeout=5.0)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def send_message(self, message: SessionMessage) -> bool:
        if not self.connected:
            return False
        self.sent.append(message.to_bytes())
        return True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    # Test helpers

    def report(self, devices: List[DeviceInfo]) -> None:
        self.on_devices(devices)

    def deliver(self, data: bytes) -> None:
        self.on_message(SessionMessage.from_bytes(data))

    def lose(self, error: Exception) -> None:
        self.connected = False
        self.on_lost(error)


class FakeSessionFactory:
    """Session factory handing out FakeSessions."""

    def __init__(self, connect_error: Optional[Exception] = None,
                 connect_gate: Optional[threading.Event] = None):
        self.connect_error = connect_error
        self.connect_gate = connect_gate
        self.sessions: List[FakeSession] = []

    def __call__(self, **kwargs) -> FakeSession:
        session = FakeSession(connect_error=self.connect_error,
                              connect_gate=self.connect_gate, **kwargs)
        self.sessions.append(session)
        return session

    @property
    def last(self) -> FakeSession:
        return self.sessions[-1]
