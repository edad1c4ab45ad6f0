#!/usr/bin/env python3
"""
Interactive Robot Test Script.

This script demonstrates the high-level VietRobot API.
Run it to scan for a robot, connect, drive the actuators and read sensors.
Pass a serial port (e.g. /dev/rfcomm0 or COM5) to use an SPP port instead
of a raw RFCOMM socket.
"""

import sys
import time
import logging
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vietrobot import VietRobot, Orientation, LedState
from vietrobot.transport import SerialSession

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


class ConsoleHost:
    """Minimal host that remembers what the scan found."""

    def __init__(self):
        self.devices = []

    def report_devices(self, devices):
        self.devices = devices
        for device in devices:
            print(f"  found {device.device_id} {device.name}")


def main():
    serial_port = sys.argv[1] if len(sys.argv) > 1 else None

    print("Initializing robot driver...")
    if serial_port:
        robot = VietRobot(session_factory=SerialSession)
    else:
        robot = VietRobot()
    host = ConsoleHost()
    robot.attach(host)

    print("\nScanning...")
    robot.scan()
    if serial_port:
        device_id = serial_port
    else:
        deadline = time.time() + 15.0
        while not host.devices and time.time() < deadline:
            time.sleep(0.2)
        if not host.devices:
            print("No robot found! Is it powered on?")
            robot.disconnect()
            return
        device_id = host.devices[0].device_id

    print(f"\nConnecting to {device_id}...")
    try:
        robot.connect(device_id)
    except RuntimeError as e:
        print(f"Failed to connect: {e}")
        return
    print("Connected!")

    try:
        print("\nLED and traffic light...")
        robot.set_led_rgb(0, 128, 255)
        robot.set_led_traffic(0, red=LedState.OFF, yellow=LedState.OFF, green=LedState.ON)

        print("Motors forward for one second...")
        robot.all_motors_full_control(Orientation.CW, 60)
        time.sleep(1.0)
        robot.on_stop_all()

        print("\nReading sensors for 5 seconds (Ctrl+C to stop)...")
        for i in range(5):
            distance = robot.ultrasonic_distance(0, timeout=0.5)
            temperature = robot.temperature(0)
            button = robot.button_pressed(0)
            print(f"\r[{i+1}/5] distance: {distance} cm | "
                  f"temperature: {temperature} C | button: {button}", end="")
            sys.stdout.flush()
            time.sleep(1)
        print()

    except KeyboardInterrupt:
        print("\nInterrupted by user.")
    finally:
        print("\nStopping and disconnecting...")
        robot.on_stop_all()
        robot.disconnect()
        print("Done.")


if __name__ == "__main__":
    main()
