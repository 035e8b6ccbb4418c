"""
Common Schema Types
==================

Bounded Context: Shared Data Structures

Design Principles:
- Immutability: frozen=True prevents accidental mutation
- Serialization: to_dict() for JSON export
- Validation: Constructor validates invariants

Types:
- Timestamp: ISO 8601 timestamp wrapper (UTC)
- parse_epoch(): wire timestamp (ISO string or epoch number) to epoch seconds
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

SCHEMA_VERSION = "1.0"


@dataclass(frozen=True)
class Timestamp:
    """
    Immutable ISO 8601 timestamp wrapper.

    Naive values are read as UTC.

    Example:
        >>> Timestamp.from_epoch(0).value
        '1970-01-01T00:00:00+00:00'
    """
    value: str

    @classmethod
    def now(cls) -> 'Timestamp':
        """Create timestamp from current time."""
        return cls(value=datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_datetime(cls, dt: datetime) -> 'Timestamp':
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return cls(value=dt.isoformat())

    @classmethod
    def from_epoch(cls, seconds: float) -> 'Timestamp':
        return cls(value=datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat())

    def to_datetime(self) -> datetime:
        """Parse to an aware datetime.

        Raises:
            ValueError: If timestamp format invalid
        """
        try:
            dt = datetime.fromisoformat(self.value.replace("Z", "+00:00"))
        except (AttributeError, ValueError) as e:
            raise ValueError(f"Invalid ISO timestamp: {self.value}") from e
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def to_epoch(self) -> float:
        return self.to_datetime().timestamp()

    def to_dict(self) -> str:
        """Serialize to JSON (as string)."""
        return self.value


def parse_epoch(value: Union[str, int, float, Any]) -> float:
    """
    Convert a wire timestamp to epoch seconds.

    Accepts an epoch number (seconds) or an ISO 8601 string.

    Raises:
        ValueError: unparseable or non-finite value
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(f"Invalid timestamp: {value!r}")
        return float(value)
    if isinstance(value, str):
        return Timestamp(value=value).to_epoch()
    raise ValueError(f"Invalid timestamp: {value!r}")
