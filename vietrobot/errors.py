"""Exceptions raised by the VietRobot driver."""


class VietRobotError(RuntimeError):
    """Base class for all driver errors."""
    pass


class TransportUnavailableError(VietRobotError):
    """Raised when no transport session can be created or used."""
    pass


class DiscoveryError(VietRobotError):
    """Raised when Bluetooth device discovery fails."""
    pass


class PairingFailedError(VietRobotError):
    """Raised when pairing with the robot (PIN exchange) fails."""
    pass


class ConnectFailedError(VietRobotError):
    """Raised when the byte stream to the robot cannot be opened."""
    pass


class EncodingOverflowError(VietRobotError):
    """Raised when a payload does not fit the 16-bit frame length field."""
    def __init__(self, message, payload_length):
        super().__init__(message)
        self.payload_length = payload_length
