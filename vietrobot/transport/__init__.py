"""Transport sessions carrying frames to and from the robot."""

from .base import PeripheralSession, StreamSession
from .rfcomm import RFCOMMSession
from .serial import SerialSession

__all__ = ["PeripheralSession", "StreamSession", "RFCOMMSession", "SerialSession"]
