"""
Ping Message Schema
===================

Bounded Context: Inbound GPS Data

Wire form of a participant device fix.

Message Flow:
    Device → MQTT → PingSubscriber → PingMessage → TrackingService.ingest_ping
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from runtrack_course.geometry.mapper import Ping

from .common import SCHEMA_VERSION, Timestamp, parse_epoch


def _optional_float(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    return None if value is None else float(value)


@dataclass(frozen=True)
class PingMessage:
    """
    GPS ping for one participant on one course.

    Attributes:
        participant_id: Participant identifier
        course_id: Course identifier
        latitude, longitude: WGS84 degrees
        timestamp: Fix time (epoch seconds)
        altitude: Meters (optional)
        heading: Degrees clockwise from north (optional)
        speed: Device-reported speed in m/s (optional)
        schema_version: Message schema version

    Range checks happen when the message becomes a Ping (to_ping()).

    Example:
        >>> msg = PingMessage.from_dict({
        ...     "participant_id": "p1", "course_id": "city-10k",
        ...     "latitude": 37.5665, "longitude": 126.978,
        ...     "timestamp": "2025-10-24T09:00:00Z",
        ... })
    """
    participant_id: str
    course_id: str
    latitude: float
    longitude: float
    timestamp: float
    altitude: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    schema_version: str = SCHEMA_VERSION

    def __post_init__(self):
        """Validate identifiers."""
        if not self.participant_id:
            raise ValueError("participant_id cannot be empty")
        if not self.course_id:
            raise ValueError("course_id cannot be empty")

    def to_ping(self) -> Ping:
        """
        Domain ping for this message.

        Raises:
            MalformedPingError: coordinates or timestamp out of range
        """
        return Ping(
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp=self.timestamp,
            altitude=self.altitude,
            heading=self.heading,
            speed=self.speed,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            'schema_version': self.schema_version,
            'participant_id': self.participant_id,
            'course_id': self.course_id,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'altitude': self.altitude,
            'heading': self.heading,
            'speed': self.speed,
            'timestamp': Timestamp.from_epoch(self.timestamp).to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PingMessage':
        """Deserialize from dict.

        The timestamp may be an ISO 8601 string or epoch seconds.

        Raises:
            ValueError: If required fields missing or invalid
        """
        try:
            return cls(
                participant_id=str(data['participant_id']),
                course_id=str(data['course_id']),
                latitude=float(data['latitude']),
                longitude=float(data['longitude']),
                timestamp=parse_epoch(data['timestamp']),
                altitude=_optional_float(data, 'altitude'),
                heading=_optional_float(data, 'heading'),
                speed=_optional_float(data, 'speed'),
                schema_version=str(data.get('schema_version', SCHEMA_VERSION)),
            )
        except KeyError as e:
            raise ValueError(f"Missing required PingMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid PingMessage data: {e}")
