"""
Realtime View Message Schema
============================

Bounded Context: Spectator View Data Structures

Design:
- ViewPoint: one displayed participant or cluster representative
- StandingEntry: one top-N standings row
- RealtimeViewMessage: complete view for one course and zoom level

Message Flow:
    LocationAggregator → RealtimeView → RealtimeViewMessage → RealtimeViewPublisher → MQTT
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from runtrack_course.analytics.aggregator import RealtimeView

from .common import SCHEMA_VERSION, Timestamp


@dataclass(frozen=True)
class ViewPoint:
    """
    Displayed point.

    cluster_size > 1 means the point represents a grid cell; the fields
    are those of its most recent member.
    """
    participant_id: str
    nickname: str
    latitude: float
    longitude: float
    timestamp: float
    altitude: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    cluster_size: int = 1

    def __post_init__(self):
        if self.cluster_size < 1:
            raise ValueError(f"cluster_size must be >= 1, got {self.cluster_size}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'participant_id': self.participant_id,
            'nickname': self.nickname,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'altitude': self.altitude,
            'heading': self.heading,
            'speed': self.speed,
            'timestamp': self.timestamp,
            'cluster_size': self.cluster_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ViewPoint':
        return cls(
            participant_id=str(data['participant_id']),
            nickname=str(data.get('nickname', '')),
            latitude=float(data['latitude']),
            longitude=float(data['longitude']),
            timestamp=float(data['timestamp']),
            altitude=data.get('altitude'),
            heading=data.get('heading'),
            speed=data.get('speed'),
            cluster_size=int(data.get('cluster_size', 1)),
        )


@dataclass(frozen=True)
class StandingEntry:
    """Top-N standings row."""
    rank: int
    participant_id: str
    nickname: str
    bib_number: str
    elapsed_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rank': self.rank,
            'participant_id': self.participant_id,
            'nickname': self.nickname,
            'bib_number': self.bib_number,
            'elapsed_time': self.elapsed_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StandingEntry':
        elapsed = data.get('elapsed_time')
        return cls(
            rank=int(data['rank']),
            participant_id=str(data['participant_id']),
            nickname=str(data.get('nickname', '')),
            bib_number=str(data.get('bib_number', '')),
            elapsed_time=None if elapsed is None else float(elapsed),
        )


@dataclass(frozen=True)
class RealtimeViewMessage:
    """
    Realtime view for one course at one zoom level.

    Attributes:
        schema_version: Message schema version
        timestamp: Message creation time
        course_id: Course identifier
        zoom_level: Map zoom level (1-20)
        participants: Displayed points
        top3: Head of the standings
        clustered: True when points are grid clusters
    """
    schema_version: str
    timestamp: Timestamp
    course_id: str
    zoom_level: int
    participants: List[ViewPoint] = field(default_factory=list)
    top3: List[StandingEntry] = field(default_factory=list)
    clustered: bool = False

    def __post_init__(self):
        """Validate invariants."""
        if not 1 <= self.zoom_level <= 20:
            raise ValueError(f"zoom_level must be in [1, 20], got {self.zoom_level}")

    @classmethod
    def from_view(cls, view: RealtimeView) -> 'RealtimeViewMessage':
        return cls(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            course_id=view.course_id,
            zoom_level=view.zoom_level,
            participants=[
                ViewPoint(
                    participant_id=p.position.participant_id,
                    nickname=p.position.nickname,
                    latitude=p.position.latitude,
                    longitude=p.position.longitude,
                    timestamp=p.position.timestamp,
                    altitude=p.position.altitude,
                    heading=p.position.heading,
                    speed=p.position.speed,
                    cluster_size=p.cluster_size,
                )
                for p in view.participants
            ],
            top3=[
                StandingEntry(
                    rank=e.rank,
                    participant_id=e.participant_id,
                    nickname=e.nickname,
                    bib_number=e.bib_number,
                    elapsed_time=e.elapsed_time,
                )
                for e in view.top3
            ],
            clustered=view.clustered,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'course_id': self.course_id,
            'zoom_level': self.zoom_level,
            'clustered': self.clustered,
            'participants': [p.to_dict() for p in self.participants],
            'top3': [e.to_dict() for e in self.top3],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RealtimeViewMessage':
        """Deserialize from dict.

        Raises:
            ValueError: If required fields missing or invalid
        """
        try:
            return cls(
                schema_version=str(data['schema_version']),
                timestamp=Timestamp(value=data['timestamp']),
                course_id=str(data['course_id']),
                zoom_level=int(data['zoom_level']),
                participants=[ViewPoint.from_dict(p) for p in data.get('participants', [])],
                top3=[StandingEntry.from_dict(e) for e in data.get('top3', [])],
                clustered=bool(data.get('clustered', False)),
            )
        except KeyError as e:
            raise ValueError(f"Missing required RealtimeViewMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid RealtimeViewMessage data: {e}")

    @property
    def point_count(self) -> int:
        return len(self.participants)

    @property
    def participant_count(self) -> int:
        """Participants represented (cluster members included)."""
        return sum(p.cluster_size for p in self.participants)
