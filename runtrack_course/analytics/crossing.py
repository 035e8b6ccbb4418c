"""
Checkpoint Crossing Module
==========================

Turns monotonic course progress into discrete checkpoint crossings.

Design:
- Detector is stateless: last crossed index comes in, new index goes out
- Crossing timestamps linearly interpolated between bracketing pings
- Hysteresis band past each checkpoint absorbs GPS jitter
- Index never decreases (backward movement is a position update only)
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from runtrack_course.geometry.course import Course


@dataclass(frozen=True)
class CrossingEvent:
    """
    Immutable checkpoint crossing.

    Attributes:
        participant_id: Participant who crossed
        course_id: Course of the checkpoint
        checkpoint_index: Index of the crossed checkpoint
        checkpoint_id: Stable checkpoint identifier
        timestamp: Interpolated crossing time (epoch seconds)
        is_terminal: True for the finish checkpoint
    """

    participant_id: str
    course_id: str
    checkpoint_index: int
    checkpoint_id: str
    timestamp: float
    is_terminal: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "course_id": self.course_id,
            "checkpoint_index": self.checkpoint_index,
            "checkpoint_id": self.checkpoint_id,
            "timestamp": self.timestamp,
            "is_terminal": self.is_terminal,
        }


def interpolate_crossing_time(
    target: float,
    d0: float,
    t0: float,
    d1: float,
    t1: float,
) -> float:
    """
    Time at which distance `target` was passed between (d0, t0) and (d1, t1).

    t = t0 + (t1 - t0) * (target - d0) / (d1 - d0), with the fraction
    clamped to [0, 1]. Zero progress between the fixes yields t1.
    """
    span = d1 - d0
    if span <= 0:
        return t1
    fraction = min(max((target - d0) / span, 0.0), 1.0)
    return t0 + (t1 - t0) * fraction


class CheckpointCrossingDetector:
    """
    Detects checkpoint crossings for one participant per call.

    Threshold for checkpoint k is distance(k) + hysteresis_m, clamped to
    the route length so the finish stays reachable. The crossing time is
    interpolated against the checkpoint's own distance, not the threshold.

    Usage:
        detector = CheckpointCrossingDetector(hysteresis_m=3.0)
        events, last_index = detector.detect(
            course, participant_id,
            last_crossed_index=progress.last_crossed_index,
            previous=(progress.distance_covered, progress.last_timestamp),
            current=(new_distance, ping.timestamp),
            start_timestamp=progress.start_timestamp,
        )
    """

    def __init__(self, hysteresis_m: float = 3.0):
        if hysteresis_m < 0:
            raise ValueError(f"hysteresis_m must be >= 0, got {hysteresis_m}")
        self.hysteresis_m = hysteresis_m

    def threshold(self, course: Course, index: int) -> float:
        """Distance at which checkpoint `index` counts as crossed."""
        return min(course.checkpoint(index).distance_from_start + self.hysteresis_m, course.total_distance)

    def detect(
        self,
        course: Course,
        participant_id: str,
        last_crossed_index: int,
        previous: Optional[Tuple[float, float]],
        current: Tuple[float, float],
        start_timestamp: float,
    ) -> Tuple[List[CrossingEvent], int]:
        """
        Crossings implied by moving from `previous` to `current`.

        Args:
            course: Course geometry
            participant_id: Participant being evaluated
            last_crossed_index: Last crossed checkpoint (-1 = none)
            previous: (distance, timestamp) of the previous accepted ping,
                      None for the first ping
            current: (distance, timestamp) of the ping being applied
            start_timestamp: Session start time

        Returns:
            Tuple of:
            - events: Crossings in checkpoint order (possibly empty)
            - last_crossed_index: Updated index (>= the input index)
        """
        events: List[CrossingEvent] = []
        index = last_crossed_index
        terminal = course.terminal_index

        # Start line is crossed when the session starts
        if index < 0:
            start = course.checkpoint(0)
            events.append(self._event(course, participant_id, start.index, start_timestamp))
            index = 0

        if previous is None:
            d0, t0 = course.checkpoint(0).distance_from_start, start_timestamp
        else:
            d0, t0 = previous
        d1, t1 = current

        while index < terminal:
            nxt = index + 1
            if d1 < self.threshold(course, nxt):
                break
            target = course.checkpoint(nxt).distance_from_start
            events.append(self._event(
                course, participant_id, nxt,
                interpolate_crossing_time(target, d0, t0, d1, t1),
            ))
            index = nxt

        return events, index

    @staticmethod
    def _event(course: Course, participant_id: str, index: int, timestamp: float) -> CrossingEvent:
        checkpoint = course.checkpoint(index)
        return CrossingEvent(
            participant_id=participant_id,
            course_id=course.course_id,
            checkpoint_index=index,
            checkpoint_id=checkpoint.checkpoint_id,
            timestamp=timestamp,
            is_terminal=index == course.terminal_index,
        )

    def __repr__(self) -> str:
        return f"CheckpointCrossingDetector(hysteresis_m={self.hysteresis_m})"
