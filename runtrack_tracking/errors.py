"""
Tracking error taxonomy.

Ingestion-path errors are local to one ping and never fatal to the
service. Course-level errors affect only that course.

Hierarchy:
    TrackingError
    ├── MalformedPingError (ValueError)
    ├── StalePingError
    ├── OutlierPingError
    ├── InvalidTransitionError
    ├── UnknownParticipantOrCourseError (LookupError)
    ├── CourseDataUnavailableError
    ├── SessionClosedError
    └── InvalidZoomLevelError (ValueError)
"""

from runtrack_course.errors import (
    InvalidTransitionError,
    MalformedPingError,
    OutlierPingError,
    RejectReason,
    StalePingError,
    TrackingError,
)

MIN_ZOOM_LEVEL = 1
MAX_ZOOM_LEVEL = 20


class UnknownParticipantOrCourseError(TrackingError, LookupError):
    """Course or participant not found."""

    def __init__(self, course_id: str, participant_id: str = None):
        self.course_id = course_id
        self.participant_id = participant_id
        if participant_id is None:
            message = f"Unknown course '{course_id}'"
        else:
            message = f"Unknown participant '{participant_id}' on course '{course_id}'"
        super().__init__(message)


class CourseDataUnavailableError(TrackingError):
    """Checkpoint sequence missing, empty or invalid for a course."""

    def __init__(self, course_id: str, reason: str):
        self.course_id = course_id
        self.reason = reason
        super().__init__(f"Course data unavailable for '{course_id}': {reason}")


class SessionClosedError(TrackingError):
    """Lifecycle command for a session already in a terminal state."""

    def __init__(self, course_id: str, participant_id: str, status):
        self.course_id = course_id
        self.participant_id = participant_id
        self.status = status
        super().__init__(
            f"Session for '{participant_id}' on '{course_id}' is closed ({status.value})"
        )


class InvalidZoomLevelError(TrackingError, ValueError):
    """Zoom level is not an integer in [1, 20]."""

    def __init__(self, zoom_level):
        self.zoom_level = zoom_level
        super().__init__(
            f"zoom_level must be an integer in [{MIN_ZOOM_LEVEL}, {MAX_ZOOM_LEVEL}], got {zoom_level!r}"
        )


def validate_zoom_level(zoom_level) -> int:
    """
    Return zoom_level if it is an integer in [1, 20].

    Raises:
        InvalidZoomLevelError: otherwise (bools and floats included)
    """
    if isinstance(zoom_level, bool) or not isinstance(zoom_level, int):
        raise InvalidZoomLevelError(zoom_level)
    if not MIN_ZOOM_LEVEL <= zoom_level <= MAX_ZOOM_LEVEL:
        raise InvalidZoomLevelError(zoom_level)
    return zoom_level


__all__ = [
    "TrackingError",
    "MalformedPingError",
    "StalePingError",
    "OutlierPingError",
    "InvalidTransitionError",
    "UnknownParticipantOrCourseError",
    "CourseDataUnavailableError",
    "SessionClosedError",
    "InvalidZoomLevelError",
    "RejectReason",
    "validate_zoom_level",
]
