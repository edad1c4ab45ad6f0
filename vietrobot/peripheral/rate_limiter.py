"""Sliding-window limiter for outbound Bluetooth messages."""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque

logger = logging.getLogger(__name__)

BT_SEND_RATE_MAX = 40  # sends per second
WINDOW_SECONDS = 1.0


class RateLimiter:
    """Admits at most `max_rate` sends in any one-second window.

    Denied sends are not queued; the caller simply drops them.
    """

    def __init__(self,
                 max_rate: int = BT_SEND_RATE_MAX,
                 window: float = WINDOW_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize limiter.

        Args:
            max_rate: Maximum admitted sends per window
            window: Window length in seconds
            clock: Monotonic time source (injectable for tests)
        """
        self._max_rate = max_rate
        self._window = window
        self._clock = clock
        self._sent: Deque[float] = deque()
        self._lock = threading.Lock()
        self._denied = 0

    @property
    def max_rate(self) -> int:
        return self._max_rate

    def okay_to_send(self) -> bool:
        """Admit one send if the window still has room."""
        with self._lock:
            now = self._clock()
            while self._sent and now - self._sent[0] >= self._window:
                self._sent.popleft()

            if len(self._sent) >= self._max_rate:
                self._denied += 1
                if self._denied % 100 == 1:  # Log periodically
                    logger.warning(f"Send rate above {self._max_rate}/s, dropping messages")
                return False

            self._sent.append(now)
            return True

    def reset(self) -> None:
        """Forget all admitted sends."""
        with self._lock:
            self._sent.clear()
            self._denied = 0

    @property
    def admitted_in_window(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for t in self._sent if now - t < self._window)
