"""PIN pairing through an interactive bluetoothctl session.

bluetoothctl prints its PIN prompt without a trailing newline, so the
output is read in whatever chunks are available and scanned for
markers rather than lines.
"""
from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time

from ...errors import PairingFailedError
from .core import BLUETOOTHCTL

logger = logging.getLogger(__name__)

DEFAULT_PAIRING_TIMEOUT = 20.0  # seconds

PIN_PROMPT = "Enter PIN code"
SUCCESS_MARKERS = ("Pairing successful", "AlreadyExists", "Paired: yes")
FAILURE_MARKERS = ("Failed to pair", "not available", "AuthenticationFailed")


def pair_device(address: str, pin: str,
                timeout: float = DEFAULT_PAIRING_TIMEOUT) -> None:
    """Pair with a device, answering the PIN prompt with `pin`.

    Raises:
        PairingFailedError: bluetoothctl missing, pairing rejected, or timeout
    """
    try:
        proc = subprocess.Popen(
            [BLUETOOTHCTL],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except FileNotFoundError as e:
        raise PairingFailedError("Pairing requires BlueZ 'bluetoothctl' on PATH") from e

    chunks: queue.Queue[bytes] = queue.Queue()

    def pump():
        while True:
            try:
                data = proc.stdout.read1(1024)
            except OSError:
                break
            if not data:
                break
            chunks.put(data)

    reader = threading.Thread(target=pump, daemon=True, name="PairingReader")
    reader.start()

    def command(line: str) -> None:
        proc.stdin.write(f"{line}\n".encode())
        proc.stdin.flush()

    try:
        command("agent KeyboardOnly")
        command("default-agent")
        command(f"pair {address}")

        transcript = ""
        pin_sent = False
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PairingFailedError(f"Pairing with {address} timed out")
            try:
                transcript += chunks.get(timeout=remaining).decode(errors="ignore")
            except queue.Empty:
                continue

            if not pin_sent and PIN_PROMPT in transcript:
                logger.debug(f"Answering PIN prompt for {address}")
                command(pin)
                pin_sent = True

            if any(marker in transcript for marker in SUCCESS_MARKERS):
                logger.info(f"Paired with {address}")
                return

            failure = next((m for m in FAILURE_MARKERS if m in transcript), None)
            if failure is not None:
                raise PairingFailedError(f"Pairing with {address} failed: {failure}")
    except (BrokenPipeError, OSError) as e:
        raise PairingFailedError(f"bluetoothctl exited during pairing: {e}") from e
    finally:
        try:
            command("quit")
        except OSError:
            pass
        try:
            proc.wait(timeout=2.0)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
