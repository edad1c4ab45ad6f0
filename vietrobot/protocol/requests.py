"""Request/response correlation for GET_* queries.

The wire protocol carries no sequence numbers, so requests are numbered
locally and matched to replies by (command id, port) in FIFO order.
"""
from __future__ import annotations

import itertools
import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from typing import Tuple

from ..models import CommandId, SensorReading

logger = logging.getLogger(__name__)


class PendingRequests:
    """Table of outstanding queries keyed by a local sequence number."""

    def __init__(self):
        self._sequence = itertools.count(1)
        self._pending: "OrderedDict[int, Tuple[CommandId, int, Future]]" = OrderedDict()
        self._lock = threading.Lock()

    def register(self, command_id: CommandId, port: int) -> Tuple[int, Future]:
        """Record a query that is about to be sent.

        Returns:
            (sequence number, Future resolved with the SensorReading)
        """
        future: Future = Future()
        with self._lock:
            seq = next(self._sequence)
            self._pending[seq] = (CommandId(command_id), port, future)
        return seq, future

    def resolve(self, reading: SensorReading) -> bool:
        """Resolve the oldest request matching the reading.

        Returns:
            True if a pending request was resolved
        """
        with self._lock:
            for seq, (command_id, port, future) in self._pending.items():
                if command_id == reading.command_id and port == reading.port:
                    del self._pending[seq]
                    break
            else:
                return False

        if not future.done():
            future.set_result(reading)
        logger.debug(f"Resolved request #{seq} ({reading.command_id.name} port {reading.port})")
        return True

    def discard(self, seq: int) -> None:
        """Forget a request, e.g. after its waiter timed out or it was not sent."""
        with self._lock:
            entry = self._pending.pop(seq, None)
        if entry is not None:
            entry[2].cancel()

    def cancel_all(self) -> None:
        """Cancel every outstanding request (connection went away)."""
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
        for _, _, future in entries:
            future.cancel()
        if entries:
            logger.debug(f"Cancelled {len(entries)} pending requests")

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
