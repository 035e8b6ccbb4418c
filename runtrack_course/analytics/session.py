"""
Tracking Session State Machine
==============================

Per-participant session lifecycle.

Design:
- Transition table, no hidden state (status in, status out)
- Terminal states never reopen
- Illegal transitions raise InvalidTransitionError
"""

from enum import Enum
from typing import Dict, Optional, Tuple

from runtrack_course.errors import InvalidTransitionError, RejectReason


class TrackingStatus(str, Enum):
    """Session status."""
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TrackingStatus.COMPLETED,
    TrackingStatus.STOPPED,
    TrackingStatus.FAILED,
})


class ParticipationStatus(str, Enum):
    """Status used for ranking."""
    REGISTERED = "registered"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    DNF = "dnf"
    DNS = "dns"


class SessionEvent(str, Enum):
    """Inputs that drive the state machine."""
    PING = "ping"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    FINISH = "finish"
    TIMEOUT = "timeout"


_TRANSITIONS: Dict[Tuple[TrackingStatus, SessionEvent], TrackingStatus] = {
    (TrackingStatus.STARTED, SessionEvent.PING): TrackingStatus.IN_PROGRESS,
    (TrackingStatus.IN_PROGRESS, SessionEvent.PING): TrackingStatus.IN_PROGRESS,
    (TrackingStatus.IN_PROGRESS, SessionEvent.PAUSE): TrackingStatus.PAUSED,
    (TrackingStatus.PAUSED, SessionEvent.RESUME): TrackingStatus.IN_PROGRESS,
    (TrackingStatus.IN_PROGRESS, SessionEvent.FINISH): TrackingStatus.COMPLETED,
    (TrackingStatus.STARTED, SessionEvent.STOP): TrackingStatus.STOPPED,
    (TrackingStatus.IN_PROGRESS, SessionEvent.STOP): TrackingStatus.STOPPED,
    (TrackingStatus.PAUSED, SessionEvent.STOP): TrackingStatus.STOPPED,
    (TrackingStatus.IN_PROGRESS, SessionEvent.TIMEOUT): TrackingStatus.FAILED,
    (TrackingStatus.PAUSED, SessionEvent.TIMEOUT): TrackingStatus.STOPPED,
}


class TrackingSessionStateMachine:
    """
    Stateless lifecycle rules for tracking sessions.

    All methods are static: the current status is passed in and the next
    status is returned, the caller stores it.

    Usage:
        status = TrackingSessionStateMachine.transition(status, SessionEvent.PAUSE)
    """

    @staticmethod
    def transition(status: TrackingStatus, event: SessionEvent) -> TrackingStatus:
        """
        Next status for an event.

        Raises:
            InvalidTransitionError: event not allowed from status
        """
        try:
            return _TRANSITIONS[(status, event)]
        except KeyError:
            raise InvalidTransitionError(status, event.value) from None

    @staticmethod
    def can_transition(status: TrackingStatus, event: SessionEvent) -> bool:
        return (status, event) in _TRANSITIONS

    @staticmethod
    def ping_rejection(status: TrackingStatus) -> Optional[RejectReason]:
        """
        Reason a ping must be rejected in this status, or None if it may apply.

        Terminal sessions reject as SESSION_CLOSED, paused ones as SESSION_PAUSED.
        """
        if status.is_terminal:
            return RejectReason.SESSION_CLOSED
        if status == TrackingStatus.PAUSED:
            return RejectReason.SESSION_PAUSED
        return None

    @staticmethod
    def participation(
        status: TrackingStatus,
        marked: Optional[ParticipationStatus] = None,
    ) -> ParticipationStatus:
        """
        Ranking status for a session.

        An explicit DNS/DNF mark wins; otherwise COMPLETED is FINISHED,
        STOPPED/FAILED are DNF and every live status is IN_PROGRESS.
        """
        if marked is not None:
            return marked
        if status == TrackingStatus.COMPLETED:
            return ParticipationStatus.FINISHED
        if status in (TrackingStatus.STOPPED, TrackingStatus.FAILED):
            return ParticipationStatus.DNF
        return ParticipationStatus.IN_PROGRESS
