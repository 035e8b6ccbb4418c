"""
Core Error Taxonomy
===================

Exceptions raised by the geometry and analytics layers.

Service-level errors (unknown course, closed session, invalid zoom) extend
TrackingError in runtrack_tracking.errors.
"""

from enum import Enum


class RejectReason(str, Enum):
    """Why an ingested ping was not applied."""
    MALFORMED = "malformed"
    STALE = "stale"
    OFF_COURSE = "off_course"
    IMPLAUSIBLE_SPEED = "implausible_speed"
    SESSION_CLOSED = "session_closed"
    SESSION_PAUSED = "session_paused"


class TrackingError(Exception):
    """Base class for every tracking error."""


class MalformedPingError(TrackingError, ValueError):
    """Ping has invalid coordinates or timestamp."""


class StalePingError(TrackingError):
    """Ping timestamp is not after the last accepted ping (dropped silently)."""

    def __init__(self, timestamp: float, last_timestamp: float):
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp
        super().__init__(f"Stale ping: ts={timestamp} <= last accepted ts={last_timestamp}")


class OutlierPingError(TrackingError):
    """Ping is too far off course or implies an impossible speed."""

    def __init__(self, reason: RejectReason, message: str):
        self.reason = reason
        super().__init__(message)


class InvalidTransitionError(TrackingError):
    """Lifecycle command not allowed from the current session status."""

    def __init__(self, status, command: str):
        self.status = status
        self.command = command
        super().__init__(f"Cannot apply '{command}' to a session in status {status.value}")
