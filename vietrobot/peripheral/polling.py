"""Periodic polling of sensor values while the robot is connected."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5  # seconds


class PollingScheduler:
    """Runs a tick callback at a fixed period from a background thread.

    Each tick first checks `is_connected`; once the connection is gone the
    scheduler stops itself without ticking again.
    """

    def __init__(self,
                 is_connected: Callable[[], bool],
                 on_tick: Optional[Callable[[int], None]] = None,
                 interval: float = DEFAULT_POLL_INTERVAL):
        """Initialize scheduler.

        Args:
            is_connected: Checked before every tick
            on_tick: Called with the poll counter after it is incremented
            interval: Seconds between ticks
        """
        self._is_connected = is_connected
        self._on_tick = on_tick
        self._interval = interval

        self._counter = 0
        self._counter_lock = threading.Lock()

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def poll_counter(self) -> int:
        with self._counter_lock:
            return self._counter

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start ticking. A running scheduler is stopped and restarted."""
        self.stop()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._poll_loop,
            args=(self._stop_event,),
            daemon=True,
            name="PollingScheduler"
        )
        self._thread.start()
        logger.debug(f"Polling started (interval={self._interval}s)")

    def stop(self, wait: bool = True) -> None:
        """Stop ticking.

        Args:
            wait: Join the polling thread (skipped when called from it)
        """
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if (wait and thread and thread.is_alive()
                and thread is not threading.current_thread()):
            thread.join(timeout=1.0)
            logger.debug("Polling stopped")

    def tick(self) -> bool:
        """Run one polling cycle.

        Returns:
            False if the connection is gone and polling should end
        """
        if not self._is_connected():
            return False

        with self._counter_lock:
            self._counter += 1
            counter = self._counter

        if self._on_tick:
            try:
                self._on_tick(counter)
            except Exception as e:
                logger.error(f"Error in polling tick: {e}")
        return True

    def _poll_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval):
            if not self.tick():
                logger.info("Connection gone, polling stopped")
                stop_event.set()
                break
