"""Unit tests for ConnectionManager state machine and sending."""

import threading
import time
import unittest
from unittest.mock import MagicMock

from fakes import FakeSessionFactory

from vietrobot.errors import ConnectFailedError, PairingFailedError, TransportUnavailableError
from vietrobot.models import (
    ConnectionState,
    DeviceInfo,
    PAIRING_PIN,
    ROBOT_DEVICE_FILTER,
    SendOutcome,
)
from vietrobot.peripheral.connection import ConnectionManager
from vietrobot.protocol import CommandEncoder


class ConnectionTestCase(unittest.TestCase):

    poll_interval = 60.0

    def setUp(self):
        self.factory = FakeSessionFactory()
        self.manager = ConnectionManager(
            session_factory=self.factory,
            poll_interval=self.poll_interval,
        )

    def tearDown(self):
        self.manager.disconnect()

    def connect(self, device_id="00:11:22:33:44:55"):
        self.manager.scan()
        self.manager.connect(device_id)
        return self.factory.last


class TestScan(ConnectionTestCase):

    def test_initial_state(self):
        self.assertEqual(self.manager.state, ConnectionState.DISCONNECTED)
        self.assertFalse(self.manager.is_connected())

    def test_scan_creates_filtered_session(self):
        self.manager.scan()

        session = self.factory.last
        self.assertEqual(self.manager.state, ConnectionState.SCANNING)
        self.assertTrue(session.discovery_started)
        self.assertEqual(session.device_filter, ROBOT_DEVICE_FILTER)
        self.assertEqual(session.device_filter.major_device_class, 31)
        self.assertEqual(session.device_filter.minor_device_class, 0)

    def test_scan_tears_down_previous_session(self):
        first = self.connect()
        self.manager.scan()

        self.assertEqual(first.disconnect_calls, 1)
        self.assertEqual(len(self.factory.sessions), 2)
        self.assertEqual(self.manager.state, ConnectionState.SCANNING)
        self.assertFalse(self.manager.poller.is_running())

    def test_discovered_devices_reported(self):
        on_devices = MagicMock()
        self.manager.set_devices_callback(on_devices)
        self.manager.scan()

        devices = [DeviceInfo(device_id="00:11:22:33:44:55", name="VietRobot")]
        self.factory.last.report(devices)
        on_devices.assert_called_once_with(devices)

    def test_stale_session_devices_ignored(self):
        on_devices = MagicMock()
        self.manager.set_devices_callback(on_devices)
        self.manager.scan()
        stale = self.factory.last
        self.manager.scan()

        stale.report([DeviceInfo(device_id="AA:BB:CC:DD:EE:FF")])
        on_devices.assert_not_called()

    def test_session_creation_failure(self):
        manager = ConnectionManager(
            session_factory=MagicMock(side_effect=OSError("No Bluetooth adapter")),
        )
        with self.assertRaises(TransportUnavailableError):
            manager.scan()
        self.assertEqual(manager.state, ConnectionState.DISCONNECTED)


class TestConnect(ConnectionTestCase):

    def test_connect_uses_pairing_pin(self):
        session = self.connect("00:11:22:33:44:55")

        self.assertEqual(session.connect_args, ("00:11:22:33:44:55", PAIRING_PIN))
        self.assertEqual(PAIRING_PIN, "1234")
        self.assertEqual(self.manager.state, ConnectionState.CONNECTED)
        self.assertTrue(self.manager.is_connected())
        self.assertTrue(self.manager.poller.is_running())

    def test_connect_without_scan(self):
        with self.assertRaises(ConnectFailedError):
            self.manager.connect("00:11:22:33:44:55")
        self.assertEqual(self.manager.state, ConnectionState.DISCONNECTED)

    def test_pairing_failure(self):
        self.factory.connect_error = PairingFailedError("rejected")
        self.manager.scan()

        with self.assertRaises(PairingFailedError):
            self.manager.connect("00:11:22:33:44:55")

        self.assertEqual(self.manager.state, ConnectionState.DISCONNECTED)
        self.assertFalse(self.manager.is_connected())
        self.assertEqual(self.factory.last.disconnect_calls, 1)
        self.assertFalse(self.manager.poller.is_running())

    def test_connect_failure(self):
        self.factory.connect_error = ConnectFailedError("host down")
        self.manager.scan()

        with self.assertRaises(ConnectFailedError):
            self.manager.connect("00:11:22:33:44:55")
        self.assertEqual(self.manager.state, ConnectionState.DISCONNECTED)

    def test_unexpected_error_wrapped(self):
        self.factory.connect_error = OSError("adapter gone")
        self.manager.scan()

        with self.assertRaises(ConnectFailedError) as ctx:
            self.manager.connect("00:11:22:33:44:55")
        self.assertIsInstance(ctx.exception.__cause__, OSError)
        self.assertEqual(self.manager.state, ConnectionState.DISCONNECTED)

    def test_no_retry_after_failure(self):
        self.factory.connect_error = ConnectFailedError("host down")
        self.manager.scan()
        with self.assertRaises(ConnectFailedError):
            self.manager.connect("00:11:22:33:44:55")

        # The failed session is gone; a new scan is required
        with self.assertRaises(ConnectFailedError):
            self.manager.connect("00:11:22:33:44:55")
        self.assertEqual(len(self.factory.sessions), 1)

    def test_reconnect_same_device_is_noop(self):
        session = self.connect("00:11:22:33:44:55")
        self.manager.connect("00:11:22:33:44:55")

        self.assertTrue(self.manager.is_connected())
        self.assertEqual(self.manager.device_id, "00:11:22:33:44:55")
        self.assertIs(self.factory.last, session)

    def test_connect_other_device_while_connected(self):
        """A second device cannot silently replace the connected one."""
        self.connect("00:11:22:33:44:55")

        with self.assertRaises(ConnectFailedError):
            self.manager.connect("AA:BB:CC:DD:EE:FF")

        self.assertTrue(self.manager.is_connected())
        self.assertEqual(self.manager.device_id, "00:11:22:33:44:55")

    def test_device_id_cleared_on_disconnect(self):
        self.connect("00:11:22:33:44:55")
        self.manager.disconnect()
        self.assertIsNone(self.manager.device_id)

    def test_state_transitions_published(self):
        states = []
        self.manager.subscribe_state(states.append)
        self.connect()
        self.manager.disconnect()

        self.assertEqual(states, [
            ConnectionState.SCANNING,
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ])


class TestDisconnect(ConnectionTestCase):

    def test_disconnect_when_never_connected(self):
        self.manager.disconnect()
        self.assertFalse(self.manager.is_connected())
        self.assertEqual(self.manager.state, ConnectionState.DISCONNECTED)

    def test_disconnect_mid_scan(self):
        self.manager.scan()
        session = self.factory.last
        self.manager.disconnect()

        self.assertEqual(session.disconnect_calls, 1)
        self.assertFalse(self.manager.is_connected())

    def test_disconnect_mid_connect(self):
        """disconnect() while pairing is in progress cancels the connect."""
        gate = threading.Event()
        factory = FakeSessionFactory(connect_gate=gate)
        manager = ConnectionManager(session_factory=factory, poll_interval=0.01)
        manager.scan()
        session = factory.last
        errors = []

        def run_connect():
            try:
                manager.connect("00:11:22:33:44:55")
            except ConnectFailedError as e:
                errors.append(e)

        worker = threading.Thread(target=run_connect)
        worker.start()
        try:
            self.assertTrue(session.connect_entered.wait(timeout=1.0))
            self.assertEqual(manager.state, ConnectionState.CONNECTING)

            manager.disconnect()
            self.assertEqual(manager.state, ConnectionState.DISCONNECTED)
        finally:
            gate.set()
            worker.join(timeout=2.0)

        self.assertFalse(worker.is_alive())
        self.assertEqual(len(errors), 1)
        self.assertEqual(manager.state, ConnectionState.DISCONNECTED)
        self.assertFalse(manager.is_connected())
        self.assertFalse(manager.poller.is_running())
        self.assertIsNone(manager.device_id)
        self.assertGreaterEqual(session.disconnect_calls, 2)

        counter = manager.poll_counter
        time.sleep(0.05)
        self.assertEqual(manager.poll_counter, counter)

    def test_disconnect_after_connect(self):
        session = self.connect()
        self.manager.disconnect()

        self.assertFalse(self.manager.is_connected())
        self.assertEqual(self.manager.state, ConnectionState.DISCONNECTED)
        self.assertEqual(session.disconnect_calls, 1)
        self.assertFalse(self.manager.poller.is_running())

    def test_disconnect_twice(self):
        self.connect()
        self.manager.disconnect()
        self.manager.disconnect()
        self.assertFalse(self.manager.is_connected())

    def test_disconnect_resets_rate_limiter(self):
        self.connect()
        for _ in range(5):
            self.manager.send(CommandEncoder.motor_power(0, 10))
        self.assertEqual(self.manager.rate_limiter.admitted_in_window, 5)

        self.manager.disconnect()
        self.assertEqual(self.manager.rate_limiter.admitted_in_window, 0)

    def test_session_lost(self):
        session = self.connect()
        session.lose(ConnectionError("link dropped"))

        self.assertEqual(self.manager.state, ConnectionState.DISCONNECTED)
        self.assertFalse(self.manager.is_connected())
        self.assertEqual(
            self.manager.send(CommandEncoder.motor_power(0, 10)),
            SendOutcome.NOT_CONNECTED,
        )

    def test_stale_session_loss_ignored(self):
        stale = self.connect()
        current = self.connect()
        stale.lose(ConnectionError("old link"))

        self.assertTrue(self.manager.is_connected())
        self.assertIs(self.factory.last, current)


class TestSend(ConnectionTestCase):

    def test_send_when_not_connected(self):
        frame = CommandEncoder.motor_power(0, 75)
        self.assertEqual(self.manager.send(frame), SendOutcome.NOT_CONNECTED)

        self.manager.scan()
        self.assertEqual(self.manager.send(frame), SendOutcome.NOT_CONNECTED)
        self.assertEqual(self.factory.last.sent, [])

    def test_send_delivers_exact_bytes(self):
        session = self.connect()
        frame = CommandEncoder.motor_power(0, 75)

        self.assertEqual(self.manager.send(frame), SendOutcome.SENT)
        self.assertEqual(session.sent, [bytes([0x04, 0x00, 0x02, 0x01, 0x00, 0x4B])])

    def test_rate_limited_burst(self):
        session = self.connect()
        frame = CommandEncoder.led_rgb(255, 0, 128)

        outcomes = [self.manager.send(frame) for _ in range(45)]

        self.assertEqual(outcomes.count(SendOutcome.SENT), 40)
        self.assertEqual(outcomes.count(SendOutcome.DROPPED), 5)
        self.assertEqual(len(session.sent), 40)

    def test_send_without_limiter(self):
        session = self.connect()
        frame = CommandEncoder.led_rgb(0, 0, 0)
        for _ in range(45):
            self.manager.send(frame, use_limiter=False)
        self.assertEqual(len(session.sent), 45)

    def test_send_failure_reports_not_connected(self):
        session = self.connect()
        session.send_message = MagicMock(return_value=False)
        self.assertEqual(
            self.manager.send(CommandEncoder.led_rgb(1, 2, 3)),
            SendOutcome.NOT_CONNECTED,
        )

    def test_inbound_messages_forwarded(self):
        received = []
        unsubscribe = self.manager.subscribe_messages(received.append)
        session = self.connect()

        session.deliver(b"\x02\x00\x0c\x01")
        self.assertEqual(received[0].to_bytes(), b"\x02\x00\x0c\x01")

        unsubscribe()
        session.deliver(b"\x02\x00\x0c\x00")
        self.assertEqual(len(received), 1)


class TestPolling(ConnectionTestCase):

    poll_interval = 0.01

    def test_polling_starts_on_connect(self):
        self.connect()
        time.sleep(0.1)
        self.assertGreater(self.manager.poll_counter, 0)

    def test_no_ticks_after_disconnect(self):
        self.connect()
        time.sleep(0.05)
        self.manager.disconnect()

        counter = self.manager.poll_counter
        time.sleep(0.1)
        self.assertEqual(self.manager.poll_counter, counter)

    def test_poll_ticks_go_through_limiter(self):
        sends = []

        def on_poll(counter):
            sends.append(manager.send(CommandEncoder.sensor_request(0x06, 0)))

        factory = FakeSessionFactory()
        manager = ConnectionManager(
            session_factory=factory,
            poll_interval=0.001,
            max_send_rate=3,
            on_poll=on_poll,
        )
        try:
            manager.scan()
            manager.connect("00:11:22:33:44:55")
            time.sleep(0.1)
        finally:
            manager.disconnect()

        self.assertLessEqual(len(factory.last.sent), 3)
        self.assertIn(SendOutcome.DROPPED, sends)


if __name__ == '__main__':
    unittest.main()
