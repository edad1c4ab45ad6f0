from .core import (
    find_devices,
    find_serial_devices,
    is_bluetooth_serial_port,
    parse_device_class,
    parse_device_lines,
    scan_bluetooth,
)
from .pairing import pair_device
from ...errors import DiscoveryError, PairingFailedError

__all__ = [
    "find_devices",
    "find_serial_devices",
    "is_bluetooth_serial_port",
    "parse_device_class",
    "parse_device_lines",
    "scan_bluetooth",
    "pair_device",
    "DiscoveryError",
    "PairingFailedError",
]
