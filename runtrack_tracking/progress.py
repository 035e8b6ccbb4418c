"""
Progress Tracker - Per-participant live progress, applied atomically.

This module owns every participant's ParticipantProgress record. A ping is
applied all-or-nothing: it is either rejected with no state change, or the
new position, distance and any resulting crossings are committed together
by swapping one immutable record.

Thread Safety:
- One threading.Lock per (course_id, participant_id), from a lock registry
- Records are frozen dataclasses replaced in a single assignment
- snapshot()/snapshot_all() never observe a partial update
- No global lock on the ping path (registry lock held only to fetch a lock)

Ordering:
- Timestamp precedence, not arrival order: a ping not newer than the last
  accepted one is STALE and dropped, so retries and duplicates are no-ops
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from runtrack_course.analytics.crossing import CheckpointCrossingDetector, CrossingEvent
from runtrack_course.analytics.session import (
    ParticipationStatus,
    SessionEvent,
    TrackingSessionStateMachine,
    TrackingStatus,
)
from runtrack_course.geometry.mapper import CoursePositionMapper, Ping
from runtrack_course.geometry.smoothing import KalmanSmoother, KalmanState
from runtrack_tracking.errors import (
    InvalidTransitionError,
    OutlierPingError,
    RejectReason,
    SessionClosedError,
    StalePingError,
    UnknownParticipantOrCourseError,
)
from runtrack_tracking.stores import CourseStore

logger = logging.getLogger(__name__)

_machine = TrackingSessionStateMachine


@dataclass(frozen=True)
class ParticipantProgress:
    """
    Point-in-time progress of one participant on one course.

    crossing_times[i] is the crossing timestamp of checkpoint i, so its
    length is always last_crossed_index + 1.
    """

    participant_id: str
    course_id: str
    status: TrackingStatus = TrackingStatus.STARTED
    start_timestamp: Optional[float] = None
    last_ping: Optional[Ping] = None
    distance_covered: float = 0.0
    last_crossed_index: int = -1
    segment_index: int = 0
    snapped_latitude: Optional[float] = None
    snapped_longitude: Optional[float] = None
    offset_m: Optional[float] = None
    crossing_times: Tuple[float, ...] = ()
    finish_timestamp: Optional[float] = None
    elapsed_time: Optional[float] = None
    marked: Optional[ParticipationStatus] = None
    kalman: Optional[KalmanState] = field(default=None, repr=False)
    version: int = 0

    @property
    def last_timestamp(self) -> Optional[float]:
        return self.last_ping.timestamp if self.last_ping is not None else None

    @property
    def last_activity(self) -> Optional[float]:
        """Timestamp used for the ping-silence timeout."""
        if self.last_ping is not None:
            return self.last_ping.timestamp
        return self.start_timestamp

    @property
    def running_time(self) -> Optional[float]:
        """Final elapsed time once finished, else time from start to the last accepted ping."""
        if self.elapsed_time is not None:
            return self.elapsed_time
        if self.start_timestamp is None or self.last_ping is None:
            return None
        return self.last_ping.timestamp - self.start_timestamp

    @property
    def participation(self) -> ParticipationStatus:
        return _machine.participation(self.status, self.marked)

    @property
    def furthest_crossing_ts(self) -> Optional[float]:
        return self.crossing_times[-1] if self.crossing_times else None

    def to_dict(self) -> Dict:
        last = self.last_ping
        return {
            "participant_id": self.participant_id,
            "course_id": self.course_id,
            "status": self.status.value,
            "participation": self.participation.value,
            "start_timestamp": self.start_timestamp,
            "last_position": None if last is None else {
                "latitude": last.latitude,
                "longitude": last.longitude,
                "altitude": last.altitude,
                "heading": last.heading,
                "speed": last.speed,
                "timestamp": last.timestamp,
            },
            "distance_covered": self.distance_covered,
            "last_crossed_index": self.last_crossed_index,
            "crossing_times": list(self.crossing_times),
            "finish_timestamp": self.finish_timestamp,
            "elapsed_time": self.elapsed_time,
            "version": self.version,
        }


@dataclass(frozen=True)
class PingOutcome:
    """Result of apply_ping: accepted with crossings, or rejected with a reason."""

    accepted: bool
    reason: Optional[RejectReason] = None
    crossings: Tuple[CrossingEvent, ...] = ()
    progress: Optional[ParticipantProgress] = None
    detail: str = ""

    @classmethod
    def accept(cls, progress: ParticipantProgress, crossings=()) -> "PingOutcome":
        return cls(accepted=True, crossings=tuple(crossings), progress=progress)

    @classmethod
    def reject(cls, reason: RejectReason, detail: str = "", progress=None) -> "PingOutcome":
        return cls(accepted=False, reason=reason, progress=progress, detail=detail)

    @property
    def finished(self) -> bool:
        return any(event.is_terminal for event in self.crossings)

    def to_dict(self) -> Dict:
        return {
            "accepted": self.accepted,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
            "crossings": [event.to_dict() for event in self.crossings],
        }


@dataclass(frozen=True)
class SplitTime:
    """Crossing record for one checkpoint."""

    checkpoint_index: int
    checkpoint_id: str
    name: str
    timestamp: float
    elapsed: float
    segment_duration: float
    distance_from_start: float

    def to_dict(self) -> Dict:
        return {
            "checkpoint_index": self.checkpoint_index,
            "checkpoint_id": self.checkpoint_id,
            "name": self.name,
            "timestamp": self.timestamp,
            "elapsed": self.elapsed,
            "segment_duration": self.segment_duration,
            "distance_from_start": self.distance_from_start,
        }


class ProgressTracker:
    """
    Owns live progress records and applies pings and lifecycle commands.

    Usage:
        tracker = ProgressTracker(course_store, CoursePositionMapper(),
                                  CheckpointCrossingDetector())
        outcome = tracker.apply_ping("p1", "city-10k", Ping(...))
        if outcome.accepted:
            for event in outcome.crossings:
                ...
        progress = tracker.snapshot("p1", "city-10k")
    """

    def __init__(
        self,
        course_store: CourseStore,
        mapper: CoursePositionMapper,
        detector: CheckpointCrossingDetector,
        smoother: Optional[KalmanSmoother] = None,
    ):
        self.course_store = course_store
        self.mapper = mapper
        self.detector = detector
        self.smoother = smoother

        self._records: Dict[Tuple[str, str], ParticipantProgress] = {}
        self._records_lock = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_lock = threading.Lock()

    def _lock_for(self, key: Tuple[str, str]) -> threading.Lock:
        with self._locks_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def _locked(self, key: Tuple[str, str]):
        """Hold the participant's lock; retry if reset_course retired it meanwhile."""
        while True:
            lock = self._lock_for(key)
            lock.acquire()
            with self._locks_lock:
                registered = self._locks.get(key) is lock
            if registered:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _get(self, key: Tuple[str, str]) -> Optional[ParticipantProgress]:
        with self._records_lock:
            return self._records.get(key)

    def _commit(self, record: ParticipantProgress) -> ParticipantProgress:
        with self._records_lock:
            self._records[(record.course_id, record.participant_id)] = record
        return record

    # ─────────────────────────────────────────────────────────────────────
    # Ping application
    # ─────────────────────────────────────────────────────────────────────

    def apply_ping(self, participant_id: str, course_id: str, ping: Ping) -> PingOutcome:
        """
        Apply one ping for a participant, all-or-nothing.

        Returns:
            PingOutcome (accepted with crossings, or rejected with a reason)

        Raises:
            UnknownParticipantOrCourseError: course or participant not found
            CourseDataUnavailableError: course data missing or invalid
        """
        course = self.course_store.get_course(course_id)
        self.course_store.get_participant(course_id, participant_id)

        key = (course_id, participant_id)
        with self._locked(key):
            current = self._get(key)
            if current is None:
                current = ParticipantProgress(participant_id=participant_id, course_id=course_id)

            rejection = _machine.ping_rejection(current.status)
            if rejection is not None:
                logger.debug(f"Ping rejected for {participant_id}@{course_id}: {rejection.value}")
                return PingOutcome.reject(rejection, f"session {current.status.value}", current)

            kalman = current.kalman
            mapping_ping = ping
            if self.smoother is not None and (current.last_ping is None or ping.timestamp > current.last_ping.timestamp):
                lat, lng, kalman = self.smoother.smooth(current.kalman, ping.latitude, ping.longitude)
                mapping_ping = replace(ping, latitude=lat, longitude=lng)

            try:
                mapped = self.mapper.map(
                    course,
                    mapping_ping,
                    hint_index=current.segment_index,
                    previous=current.last_ping,
                    discipline=course.discipline_at(current.last_crossed_index),
                    previous_distance=current.distance_covered if current.last_ping is not None else None,
                )
            except StalePingError as e:
                logger.debug(f"Stale ping dropped for {participant_id}@{course_id}: {e}")
                return PingOutcome.reject(RejectReason.STALE, str(e), current)
            except OutlierPingError as e:
                logger.warning(f"⚠️ Outlier ping for {participant_id}@{course_id}: {e}")
                return PingOutcome.reject(e.reason, str(e), current)

            start_ts = current.start_timestamp if current.start_timestamp is not None else ping.timestamp
            if current.last_ping is None and start_ts > ping.timestamp:
                logger.warning(
                    f"⚠️ Start time {start_ts} for {participant_id}@{course_id} is after its "
                    f"first ping ({ping.timestamp}); starting at the first ping"
                )
                start_ts = ping.timestamp
            distance = max(current.distance_covered, mapped.distance_along)
            previous = None
            if current.last_ping is not None:
                previous = (current.distance_covered, current.last_ping.timestamp)

            status = _machine.transition(current.status, SessionEvent.PING)
            events, last_index = self.detector.detect(
                course,
                participant_id,
                current.last_crossed_index,
                previous,
                (distance, ping.timestamp),
                start_ts,
            )

            finish_ts = current.finish_timestamp
            elapsed = current.elapsed_time
            if any(event.is_terminal for event in events):
                status = _machine.transition(status, SessionEvent.FINISH)
                finish_ts = events[-1].timestamp
                elapsed = finish_ts - start_ts

            record = self._commit(replace(
                current,
                status=status,
                start_timestamp=start_ts,
                last_ping=mapping_ping,
                distance_covered=distance,
                last_crossed_index=last_index,
                segment_index=mapped.segment_index,
                snapped_latitude=mapped.snapped_latitude,
                snapped_longitude=mapped.snapped_longitude,
                offset_m=mapped.offset_m,
                crossing_times=current.crossing_times + tuple(event.timestamp for event in events),
                finish_timestamp=finish_ts,
                elapsed_time=elapsed,
                kalman=kalman,
                version=current.version + 1,
            ))

        if status == TrackingStatus.COMPLETED:
            logger.info(f"🏁 {participant_id} finished {course_id} in {elapsed:.1f}s")
        return PingOutcome.accept(record, events)

    # ─────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────

    def snapshot(self, participant_id: str, course_id: str) -> ParticipantProgress:
        """
        Point-in-time copy of one participant's progress.

        Raises:
            UnknownParticipantOrCourseError: no progress recorded
        """
        record = self._get((course_id, participant_id))
        if record is None:
            raise UnknownParticipantOrCourseError(course_id, participant_id)
        return record

    def snapshot_all(self, course_id: str) -> List[ParticipantProgress]:
        """Point-in-time copies of every participant's progress on a course."""
        with self._records_lock:
            return [r for (c, _), r in self._records.items() if c == course_id]

    def course_ids(self) -> List[str]:
        with self._records_lock:
            return sorted({c for c, _ in self._records.keys()})

    def split_times(self, participant_id: str, course_id: str) -> List[SplitTime]:
        """Split records for every crossed checkpoint, in course order."""
        record = self.snapshot(participant_id, course_id)
        course = self.course_store.get_course(course_id)

        splits: List[SplitTime] = []
        start_ts = record.start_timestamp or 0.0
        previous_ts = start_ts
        for index, ts in enumerate(record.crossing_times):
            checkpoint = course.checkpoint(index)
            splits.append(SplitTime(
                checkpoint_index=index,
                checkpoint_id=checkpoint.checkpoint_id,
                name=checkpoint.display_name,
                timestamp=ts,
                elapsed=ts - start_ts,
                segment_duration=ts - previous_ts,
                distance_from_start=checkpoint.distance_from_start,
            ))
            previous_ts = ts
        return splits

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle commands
    # ─────────────────────────────────────────────────────────────────────

    def start(self, participant_id: str, course_id: str, timestamp: Optional[float] = None) -> ParticipantProgress:
        """
        Open a session in STARTED status.

        Starting an already STARTED session is a no-op.

        Raises:
            SessionClosedError: session already terminal
            InvalidTransitionError: session already running
        """
        self.course_store.get_course(course_id)
        self.course_store.get_participant(course_id, participant_id)

        key = (course_id, participant_id)
        with self._locked(key):
            current = self._get(key)
            if current is not None:
                if current.status.is_terminal:
                    raise SessionClosedError(course_id, participant_id, current.status)
                if current.status != TrackingStatus.STARTED:
                    raise InvalidTransitionError(current.status, "start")
                return current

            record = self._commit(ParticipantProgress(
                participant_id=participant_id,
                course_id=course_id,
                start_timestamp=timestamp,
                version=1,
            ))
        logger.info(f"▶️ Session started: {participant_id}@{course_id}")
        return record

    def pause(self, participant_id: str, course_id: str) -> ParticipantProgress:
        return self._apply_event(participant_id, course_id, SessionEvent.PAUSE)

    def resume(self, participant_id: str, course_id: str) -> ParticipantProgress:
        return self._apply_event(participant_id, course_id, SessionEvent.RESUME)

    def stop(self, participant_id: str, course_id: str) -> ParticipantProgress:
        return self._apply_event(participant_id, course_id, SessionEvent.STOP)

    def mark_dns(self, participant_id: str, course_id: str) -> ParticipantProgress:
        """Mark a participant as Did Not Start (closes the session)."""
        return self._mark(participant_id, course_id, ParticipationStatus.DNS)

    def mark_dnf(self, participant_id: str, course_id: str) -> ParticipantProgress:
        """Mark a participant as Did Not Finish (closes the session)."""
        return self._mark(participant_id, course_id, ParticipationStatus.DNF)

    def _apply_event(self, participant_id: str, course_id: str, event: SessionEvent) -> ParticipantProgress:
        key = (course_id, participant_id)
        with self._locked(key):
            current = self._get(key)
            if current is None:
                raise UnknownParticipantOrCourseError(course_id, participant_id)
            if current.status.is_terminal:
                raise SessionClosedError(course_id, participant_id, current.status)

            status = _machine.transition(current.status, event)
            record = self._commit(replace(current, status=status, version=current.version + 1))

        logger.info(f"🔁 {participant_id}@{course_id}: {current.status.value} -> {status.value} ({event.value})")
        return record

    def _mark(self, participant_id: str, course_id: str, mark: ParticipationStatus) -> ParticipantProgress:
        self.course_store.get_course(course_id)
        self.course_store.get_participant(course_id, participant_id)

        key = (course_id, participant_id)
        with self._locked(key):
            current = self._get(key)
            if current is None:
                current = ParticipantProgress(participant_id=participant_id, course_id=course_id)
            if current.status.is_terminal:
                raise SessionClosedError(course_id, participant_id, current.status)

            status = _machine.transition(current.status, SessionEvent.STOP)
            record = self._commit(replace(current, status=status, marked=mark, version=current.version + 1))

        logger.info(f"🚩 {participant_id}@{course_id} marked {mark.value.upper()}")
        return record

    def sweep_silent(self, now: float, timeout_s: float) -> List[ParticipantProgress]:
        """
        Apply the ping-silence timeout.

        IN_PROGRESS sessions silent for longer than timeout_s become FAILED,
        PAUSED ones become STOPPED.

        Returns:
            Records that changed
        """
        with self._records_lock:
            keys = list(self._records.keys())

        changed: List[ParticipantProgress] = []
        for key in keys:
            with self._locked(key):
                current = self._get(key)
                if current is None or not _machine.can_transition(current.status, SessionEvent.TIMEOUT):
                    continue
                activity = current.last_activity
                if activity is None or now - activity <= timeout_s:
                    continue

                status = _machine.transition(current.status, SessionEvent.TIMEOUT)
                changed.append(self._commit(replace(current, status=status, version=current.version + 1)))
                logger.warning(
                    f"⏱️ {current.participant_id}@{current.course_id} silent for "
                    f"{now - activity:.0f}s: {current.status.value} -> {status.value}"
                )
        return changed

    def reset_course(self, course_id: str) -> int:
        """
        Drop all progress for a course.

        Returns:
            Number of records removed
        """
        with self._records_lock:
            keys = {k for k in self._records if k[0] == course_id}
        with self._locks_lock:
            keys.update(k for k in self._locks if k[0] == course_id)

        removed = 0
        for key in sorted(keys):
            # Wait out any in-flight update for this participant
            with self._locked(key):
                with self._records_lock:
                    if self._records.pop(key, None) is not None:
                        removed += 1
                with self._locks_lock:
                    self._locks.pop(key, None)

        logger.info(f"🧹 Reset course {course_id}: {removed} records dropped")
        return removed

    def __len__(self) -> int:
        with self._records_lock:
            return len(self._records)
