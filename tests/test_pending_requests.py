"""Unit tests for PendingRequests correlation."""

import unittest

from vietrobot.models import CommandId, SensorReading
from vietrobot.protocol import PendingRequests


def reading(command_id, port, value):
    return SensorReading(command_id=command_id, port=port, value=value)


class TestPendingRequests(unittest.TestCase):

    def setUp(self):
        self.pending = PendingRequests()

    def test_sequence_numbers_increase(self):
        seq_a, _ = self.pending.register(CommandId.GET_GAS, 0)
        seq_b, _ = self.pending.register(CommandId.GET_GAS, 0)
        self.assertLess(seq_a, seq_b)
        self.assertEqual(len(self.pending), 2)

    def test_resolve_matches_command_and_port(self):
        _, distance = self.pending.register(CommandId.GET_ULTRASONIC, 0)
        _, button = self.pending.register(CommandId.GET_BUTTON_STATE, 1)

        self.assertTrue(self.pending.resolve(reading(CommandId.GET_BUTTON_STATE, 1, True)))
        self.assertTrue(button.done())
        self.assertFalse(distance.done())
        self.assertIs(button.result().value, True)

    def test_resolve_oldest_first(self):
        _, first = self.pending.register(CommandId.GET_GAS, 0)
        _, second = self.pending.register(CommandId.GET_GAS, 0)

        self.pending.resolve(reading(CommandId.GET_GAS, 0, 1))
        self.assertEqual(first.result().value, 1)
        self.assertFalse(second.done())

        self.pending.resolve(reading(CommandId.GET_GAS, 0, 2))
        self.assertEqual(second.result().value, 2)
        self.assertEqual(len(self.pending), 0)

    def test_unmatched_reading(self):
        self.pending.register(CommandId.GET_GAS, 0)
        self.assertFalse(self.pending.resolve(reading(CommandId.GET_GAS, 1, 5)))
        self.assertEqual(len(self.pending), 1)

    def test_discard(self):
        seq, future = self.pending.register(CommandId.GET_GAS, 0)
        self.pending.discard(seq)
        self.assertTrue(future.cancelled())
        self.assertFalse(self.pending.resolve(reading(CommandId.GET_GAS, 0, 5)))

    def test_cancel_all(self):
        futures = [self.pending.register(CommandId.GET_IR_SENSOR, p)[1] for p in (0, 1)]
        self.pending.cancel_all()
        self.assertTrue(all(f.cancelled() for f in futures))
        self.assertEqual(len(self.pending), 0)


if __name__ == '__main__':
    unittest.main()
