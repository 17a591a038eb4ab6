"""Error taxonomy shared by the measurement engine and the web layer."""

from __future__ import annotations


class SpeedcheckError(Exception):
    """Base class for measurement errors."""


class TransportError(SpeedcheckError):
    """Connection refused or reset while talking to the peer."""

    def __init__(self, message: str, bytes_transferred: int = 0):
        super().__init__(message)
        self.bytes_transferred = bytes_transferred


class ConnectFailure(TransportError):
    """No connection could be established at all."""


class PhaseTimeoutError(SpeedcheckError):
    """A probe or phase ran past its wall-clock ceiling."""

    def __init__(self, message: str, bytes_transferred: int = 0):
        super().__init__(message)
        self.bytes_transferred = bytes_transferred


class ProtocolError(SpeedcheckError, ValueError):
    """Malformed request, e.g. a negative byte count."""
