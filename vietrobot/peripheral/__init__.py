"""Peripheral layer for the VietRobot controller.

This module provides:
- Connection lifecycle and rate-limited sending (ConnectionManager)
- Outbound message throttling (RateLimiter)
- Periodic sensor refresh (PollingScheduler)
- The host-facing robot facade (VietRobot)
"""

from .connection import ConnectionManager
from .polling import PollingScheduler, DEFAULT_POLL_INTERVAL
from .rate_limiter import RateLimiter, BT_SEND_RATE_MAX
from .robot import VietRobot, EXTENSION_ID

__all__ = [
    'ConnectionManager',
    'PollingScheduler',
    'DEFAULT_POLL_INTERVAL',
    'RateLimiter',
    'BT_SEND_RATE_MAX',
    'VietRobot',
    'EXTENSION_ID',
]
