from __future__ import annotations

import logging
import re
import subprocess
import threading
import time
from typing import Callable, List, Optional, Sequence

from serial.tools import list_ports

from ...errors import DiscoveryError
from ...models import DeviceFilter, DeviceInfo, ROBOT_DEVICE_FILTER

logger = logging.getLogger(__name__)

DEFAULT_SCAN_SECONDS = 5
INQUIRY_POLL_INTERVAL = 0.1  # seconds
BLUETOOTHCTL = "bluetoothctl"

_DEVICE_LINE_RE = re.compile(r"^Device\s+([0-9A-F]{2}(?::[0-9A-F]{2}){5})\s*(.*)$", re.IGNORECASE)
_CLASS_RE = re.compile(r"^\s*Class:\s*(0x[0-9A-F]+)", re.IGNORECASE | re.MULTILINE)
_NAME_RE = re.compile(r"^\s*Name:\s*(.+)$", re.MULTILINE)

# Windows exposes paired SPP devices as BTHENUM ports, BlueZ as /dev/rfcommN
_BLUETOOTH_HWID_MARKERS = ("BTHENUM", "BLUETOOTH")
_BLUETOOTH_DEVICE_MARKERS = ("rfcomm",)


def parse_device_lines(output: str) -> List[DeviceInfo]:
    """Parse `bluetoothctl devices` output into DeviceInfo records.

    Lines look like: ``Device 00:11:22:33:44:55 VietRobot``.
    Duplicate addresses are reported once.
    """
    seen = set()
    devices: List[DeviceInfo] = []
    for line in output.splitlines():
        match = _DEVICE_LINE_RE.match(line.strip())
        if not match:
            continue
        address = match.group(1).upper()
        if address in seen:
            continue
        seen.add(address)
        devices.append(DeviceInfo(device_id=address, name=match.group(2).strip()))
    return devices


def parse_device_class(info_output: str) -> Optional[int]:
    """Extract the Class-of-Device from `bluetoothctl info` output."""
    match = _CLASS_RE.search(info_output)
    if not match:
        return None
    return int(match.group(1), 16)


def parse_device_name(info_output: str) -> Optional[str]:
    match = _NAME_RE.search(info_output)
    return match.group(1).strip() if match else None


def _run_bluetoothctl(args: Sequence[str], timeout: float) -> subprocess.CompletedProcess:
    cmd = [BLUETOOTHCTL, *args]
    try:
        return subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise DiscoveryError(
            "Bluetooth discovery requires BlueZ 'bluetoothctl' on PATH"
        ) from e
    except subprocess.TimeoutExpired as e:
        raise DiscoveryError(f"'{' '.join(cmd)}' timed out after {timeout}s") from e


def _run_inquiry(scan_seconds: int, stop_event: Optional[threading.Event]) -> Optional[int]:
    """Run `bluetoothctl scan on` for `scan_seconds`, ending early on stop.

    Returns:
        The exit status, or None when the inquiry was cut short
    """
    cmd = [BLUETOOTHCTL, "--timeout", str(scan_seconds), "scan", "on"]
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except FileNotFoundError as e:
        raise DiscoveryError(
            "Bluetooth discovery requires BlueZ 'bluetoothctl' on PATH"
        ) from e

    deadline = time.monotonic() + scan_seconds + 5
    try:
        while True:
            try:
                return proc.wait(timeout=INQUIRY_POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                pass
            if stop_event is not None and stop_event.is_set():
                logger.debug("Inquiry interrupted")
                return None
            if time.monotonic() >= deadline:
                logger.warning(f"Inquiry did not finish within {scan_seconds + 5}s")
                return None
    finally:
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()


def scan_bluetooth(scan_seconds: int = DEFAULT_SCAN_SECONDS,
                   stop_event: Optional[threading.Event] = None) -> List[DeviceInfo]:
    """Run an inquiry scan and describe every device BlueZ knows about.

    Args:
        scan_seconds: Inquiry duration
        stop_event: When set, no further bluetoothctl commands are started
            and the devices described so far are returned

    Returns:
        DeviceInfo records with device_class filled in where BlueZ has it
    """
    def stopped() -> bool:
        return stop_event is not None and stop_event.is_set()

    status = _run_inquiry(scan_seconds, stop_event)
    if status:
        # Scanning can fail while known devices are still listable
        logger.warning(f"bluetoothctl scan exited with status {status}")
    if stopped():
        logger.debug("Discovery stopped after inquiry")
        return []

    listing = _run_bluetoothctl(["devices"], timeout=5)
    if listing.returncode != 0:
        raise DiscoveryError(
            f"bluetoothctl devices failed: {(listing.stderr or '').strip()}"
        )

    results: List[DeviceInfo] = []
    for device in parse_device_lines(listing.stdout):
        if stopped():
            logger.debug(f"Discovery stopped, {len(results)} device(s) described")
            break
        info = _run_bluetoothctl(["info", device.device_id], timeout=5)
        if info.returncode != 0:
            logger.debug(f"No info for {device.device_id}")
            results.append(device)
            continue
        results.append(DeviceInfo(
            device_id=device.device_id,
            name=parse_device_name(info.stdout) or device.name,
            device_class=parse_device_class(info.stdout),
        ))
    return results


def find_devices(
    *,
    device_filter: DeviceFilter = ROBOT_DEVICE_FILTER,
    matcher: Optional[Callable[[DeviceInfo], bool]] = None,
    scan_seconds: int = DEFAULT_SCAN_SECONDS,
    stop_event: Optional[threading.Event] = None,
) -> List[DeviceInfo]:
    """
    Find robots in Bluetooth range.

    Pass a custom `matcher(info) -> bool`, or rely on the Class-of-Device
    filter (the robot reports major class 31, minor class 0).
    """
    devices = scan_bluetooth(scan_seconds, stop_event)
    if matcher is not None:
        matches = [d for d in devices if matcher(d)]
    else:
        matches = [d for d in devices if device_filter.matches(d.device_class)]
    logger.info(f"Discovery found {len(matches)} of {len(devices)} devices eligible")
    return matches


def is_bluetooth_serial_port(port) -> bool:
    """Decide whether a pyserial ListPortInfo is a Bluetooth SPP port."""
    hwid = (port.hwid or "").upper()
    if any(marker in hwid for marker in _BLUETOOTH_HWID_MARKERS):
        return True
    device = (port.device or "").lower()
    return any(marker in device for marker in _BLUETOOTH_DEVICE_MARKERS)


def _port_to_info(port) -> DeviceInfo:
    """Convert pyserial's ListPortInfo to DeviceInfo."""
    return DeviceInfo(
        device_id=port.device,
        name=port.description or port.device,
        port=port.device,
    )


def find_serial_devices(
    *,
    matcher: Optional[Callable[[DeviceInfo], bool]] = None,
) -> List[DeviceInfo]:
    """
    Find Bluetooth serial ports the OS has already paired and bound.

    SPP ports do not expose the Class-of-Device, so the class filter
    cannot be applied here; `matcher` narrows the list instead.
    """
    results: List[DeviceInfo] = []
    for port in list_ports.comports():
        if not is_bluetooth_serial_port(port):
            continue
        info = _port_to_info(port)
        if matcher is None or matcher(info):
            results.append(info)
    return results
