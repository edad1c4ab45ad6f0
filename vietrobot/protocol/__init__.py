"""Binary command protocol spoken by the VietRobot controller."""

from .encoder import CommandEncoder, encode, MAX_PAYLOAD_SIZE
from .decoder import DECODE_TABLE, DecodeEntry, MessageDecoder, decode_frame
from .requests import PendingRequests

__all__ = [
    "CommandEncoder",
    "encode",
    "MAX_PAYLOAD_SIZE",
    "DECODE_TABLE",
    "DecodeEntry",
    "MessageDecoder",
    "decode_frame",
    "PendingRequests",
]
