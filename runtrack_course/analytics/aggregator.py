"""
Location Aggregator Module
==========================

Zoom-aware view of live participant positions.

Design:
- Grid clustering at low zoom, one point per participant at high zoom
- Cell size follows web-map tile geometry: 360 / 2^zoom degrees per
  256 px tile, scaled to cell_size_px
- Most recent fix represents each non-empty cell
- Zoom is validated by the caller, not here
"""

import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from runtrack_course.analytics.ranking import RankingEntry


@dataclass(frozen=True)
class LivePosition:
    """Latest accepted fix for a participant (hot-state record)."""

    participant_id: str
    latitude: float
    longitude: float
    timestamp: float
    nickname: str = ""
    altitude: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    distance_covered: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "nickname": self.nickname,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "heading": self.heading,
            "speed": self.speed,
            "timestamp": self.timestamp,
            "distance_covered": self.distance_covered,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LivePosition":
        return cls(
            participant_id=data["participant_id"],
            latitude=data["latitude"],
            longitude=data["longitude"],
            timestamp=data["timestamp"],
            nickname=data.get("nickname", ""),
            altitude=data.get("altitude"),
            heading=data.get("heading"),
            speed=data.get("speed"),
            distance_covered=data.get("distance_covered", 0.0),
        )


@dataclass(frozen=True)
class AggregatedPoint:
    """A displayed point: a single participant or a cluster representative."""

    position: LivePosition
    cluster_size: int = 1

    @property
    def is_cluster(self) -> bool:
        return self.cluster_size > 1

    def to_dict(self) -> Dict[str, Any]:
        data = self.position.to_dict()
        data["cluster_size"] = self.cluster_size
        return data


@dataclass(frozen=True)
class RealtimeView:
    """Client-facing payload for one course at one zoom level."""

    course_id: str
    zoom_level: int
    participants: Tuple[AggregatedPoint, ...]
    top3: Tuple[RankingEntry, ...]
    clustered: bool = False
    generated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "course_id": self.course_id,
            "zoom_level": self.zoom_level,
            "clustered": self.clustered,
            "generated_at": self.generated_at,
            "participants": [p.to_dict() for p in self.participants],
            "top3": [
                {
                    "rank": e.rank,
                    "participant_id": e.participant_id,
                    "nickname": e.nickname,
                    "bib_number": e.bib_number,
                    "elapsed_time": e.elapsed_time,
                }
                for e in self.top3
            ],
        }


class LocationAggregator:
    """
    Builds realtime views from live positions and standings.

    Usage:
        aggregator = LocationAggregator(cell_size_px=64, cluster_max_zoom=15)
        view = aggregator.aggregate("course-10k", positions, zoom_level=12,
                                    top3=standings.top(3))
    """

    def __init__(self, cell_size_px: int = 64, cluster_max_zoom: int = 15):
        if cell_size_px <= 0:
            raise ValueError(f"cell_size_px must be > 0, got {cell_size_px}")
        self.cell_size_px = cell_size_px
        self.cluster_max_zoom = cluster_max_zoom

    def cell_size_deg(self, zoom_level: int) -> float:
        """Grid cell edge in degrees (wider at low zoom)."""
        return 360.0 / (2 ** zoom_level) * self.cell_size_px / 256.0

    def clusters_at(self, zoom_level: int) -> bool:
        return zoom_level <= self.cluster_max_zoom

    def aggregate(
        self,
        course_id: str,
        positions: Iterable[LivePosition],
        zoom_level: int,
        top3: Sequence[RankingEntry] = (),
        now: Optional[float] = None,
    ) -> RealtimeView:
        """
        Aggregate positions for a zoom level.

        Args:
            course_id: Course being viewed
            positions: Point-in-time copy of live positions
            zoom_level: Map zoom (already validated)
            top3: Standings head to include

        Returns:
            RealtimeView
        """
        snapshot = list(positions)
        clustered = self.clusters_at(zoom_level)

        if clustered:
            points = self._cluster(snapshot, self.cell_size_deg(zoom_level))
        else:
            points = [AggregatedPoint(position=p) for p in snapshot]

        points.sort(key=lambda p: p.position.participant_id)
        return RealtimeView(
            course_id=course_id,
            zoom_level=zoom_level,
            participants=tuple(points),
            top3=tuple(top3),
            clustered=clustered,
            generated_at=now if now is not None else time.time(),
        )

    @staticmethod
    def _cluster(positions: List[LivePosition], cell_deg: float) -> List[AggregatedPoint]:
        cells: Dict[Tuple[int, int], List[LivePosition]] = {}
        for position in positions:
            key = (
                int(math.floor((position.latitude + 90.0) / cell_deg)),
                int(math.floor((position.longitude + 180.0) / cell_deg)),
            )
            cells.setdefault(key, []).append(position)

        points = []
        for members in cells.values():
            # Latest fix wins, participant id breaks ties
            representative = min(members, key=lambda p: (-p.timestamp, p.participant_id))
            points.append(AggregatedPoint(position=representative, cluster_size=len(members)))
        return points
