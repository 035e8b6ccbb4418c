"""
Crossing Event Message Schema
=============================

Bounded Context: Checkpoint Crossing Data Structures

Message Flow:
    ProgressTracker → CrossingEvent → CrossingEventMessage → CrossingEventPublisher → MQTT
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from runtrack_course.analytics.crossing import CrossingEvent

from .common import SCHEMA_VERSION, Timestamp, parse_epoch


@dataclass(frozen=True)
class CrossingEventMessage:
    """
    One checkpoint crossing, as published.

    Attributes:
        schema_version: Message schema version
        timestamp: Message creation time
        service_id: Publishing service
        participant_id: Participant who crossed
        course_id: Course identifier
        checkpoint_index: Index of the crossed checkpoint
        checkpoint_id: Stable checkpoint identifier
        crossing_time: Interpolated crossing time (epoch seconds)
        is_terminal: True when the finish was crossed
        elapsed_time: Finish elapsed time (terminal crossings only)

    Invariants:
        - checkpoint_index >= 0
        - elapsed_time is set only when is_terminal
    """
    schema_version: str
    timestamp: Timestamp
    service_id: str
    participant_id: str
    course_id: str
    checkpoint_index: int
    checkpoint_id: str
    crossing_time: float
    is_terminal: bool = False
    elapsed_time: Optional[float] = None

    def __post_init__(self):
        """Validate invariants."""
        if self.checkpoint_index < 0:
            raise ValueError(f"checkpoint_index must be >= 0, got {self.checkpoint_index}")
        if self.elapsed_time is not None and not self.is_terminal:
            raise ValueError("elapsed_time is only valid for terminal crossings")

    @classmethod
    def from_event(
        cls,
        event: CrossingEvent,
        service_id: str,
        elapsed_time: Optional[float] = None,
    ) -> 'CrossingEventMessage':
        return cls(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            service_id=service_id,
            participant_id=event.participant_id,
            course_id=event.course_id,
            checkpoint_index=event.checkpoint_index,
            checkpoint_id=event.checkpoint_id,
            crossing_time=event.timestamp,
            is_terminal=event.is_terminal,
            elapsed_time=elapsed_time if event.is_terminal else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        result = {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'service_id': self.service_id,
            'participant_id': self.participant_id,
            'course_id': self.course_id,
            'checkpoint_index': self.checkpoint_index,
            'checkpoint_id': self.checkpoint_id,
            'crossing_time': self.crossing_time,
            'is_terminal': self.is_terminal,
        }
        if self.elapsed_time is not None:
            result['elapsed_time'] = self.elapsed_time
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CrossingEventMessage':
        """Deserialize from dict.

        Raises:
            ValueError: If required fields missing or invalid
        """
        try:
            elapsed = data.get('elapsed_time')
            return cls(
                schema_version=str(data['schema_version']),
                timestamp=Timestamp(value=data['timestamp']),
                service_id=str(data['service_id']),
                participant_id=str(data['participant_id']),
                course_id=str(data['course_id']),
                checkpoint_index=int(data['checkpoint_index']),
                checkpoint_id=str(data['checkpoint_id']),
                crossing_time=parse_epoch(data['crossing_time']),
                is_terminal=bool(data.get('is_terminal', False)),
                elapsed_time=None if elapsed is None else float(elapsed),
            )
        except KeyError as e:
            raise ValueError(f"Missing required CrossingEventMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid CrossingEventMessage data: {e}")
