"""
Course Geometry Module
======================

Immutable race course representation.

Design:
- Frozen dataclasses (safe to share across threads without locks)
- Route polyline with cumulative distance, densified to a fixed spacing
- Checkpoints sit on the distance-from-start axis of the route
- numpy arrays built once at construction, read-only afterwards
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from runtrack_course.geometry.geodesy import haversine_m

DEFAULT_DENSIFY_SPACING_M = 100.0


class CheckpointType(str, Enum):
    """Checkpoint type enumeration."""
    START = "start"
    SWIM = "swim"
    TRANSITION = "transition"
    BIKE = "bike"
    RUN = "run"
    FINISH = "finish"
    INTERMEDIATE = "intermediate"


class Discipline(str, Enum):
    """Event discipline (selects the plausible-speed ceiling)."""
    RUN = "run"
    BIKE = "bike"
    SWIM = "swim"
    TRIATHLON = "triathlon"


_LEG_BY_TYPE = {
    CheckpointType.SWIM: Discipline.SWIM,
    CheckpointType.BIKE: Discipline.BIKE,
    CheckpointType.RUN: Discipline.RUN,
    CheckpointType.TRANSITION: Discipline.RUN,
}

_TYPE_LABELS = {
    CheckpointType.START: "Start",
    CheckpointType.SWIM: "Swim",
    CheckpointType.TRANSITION: "Transition",
    CheckpointType.BIKE: "Bike",
    CheckpointType.RUN: "Run",
    CheckpointType.FINISH: "Finish",
    CheckpointType.INTERMEDIATE: "Checkpoint",
}


@dataclass(frozen=True)
class Checkpoint:
    """
    Fixed point along a course.

    Attributes:
        index: 0-based position on the course (0 = start)
        checkpoint_type: Type of checkpoint
        checkpoint_id: Stable identifier, unique per course (e.g. "CP1")
        latitude, longitude: WGS84 degrees
        altitude: Meters above sea level (optional)
        distance_from_start: Cumulative course distance in meters
    """

    index: int
    checkpoint_type: CheckpointType
    checkpoint_id: str
    latitude: float
    longitude: float
    distance_from_start: float
    altitude: Optional[float] = None

    def __post_init__(self):
        """Validate checkpoint fields."""
        if self.index < 0:
            raise ValueError(f"Checkpoint index must be >= 0, got {self.index}")
        if not self.checkpoint_id:
            raise ValueError("checkpoint_id cannot be empty")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Checkpoint latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Checkpoint longitude out of range: {self.longitude}")
        if self.distance_from_start < 0:
            raise ValueError(
                f"distance_from_start must be >= 0, got {self.distance_from_start}"
            )

    @property
    def display_name(self) -> str:
        """Human-readable name ("Start", "Bike 3", "Finish")."""
        label = _TYPE_LABELS[self.checkpoint_type]
        if self.checkpoint_type in (CheckpointType.START, CheckpointType.FINISH):
            return label
        return f"{label} {self.index}"


@dataclass(frozen=True)
class RoutePoint:
    """Route polyline vertex with its cumulative distance from the start."""

    latitude: float
    longitude: float
    distance_from_start: float
    altitude: Optional[float] = None


def measure_route(coordinates: Sequence[Tuple[float, ...]]) -> List[RoutePoint]:
    """
    Build route points from raw (lat, lng[, alt]) tuples.

    Cumulative distance is the running haversine sum between vertices.
    """
    points: List[RoutePoint] = []
    total = 0.0
    previous = None
    for coord in coordinates:
        lat, lng = float(coord[0]), float(coord[1])
        alt = float(coord[2]) if len(coord) > 2 and coord[2] is not None else None
        if previous is not None:
            total += haversine_m(previous[0], previous[1], lat, lng)
        points.append(RoutePoint(latitude=lat, longitude=lng, distance_from_start=total, altitude=alt))
        previous = (lat, lng)
    return points


def densify_route(points: Sequence[RoutePoint], spacing_m: float) -> List[RoutePoint]:
    """
    Insert intermediate vertices so no leg is longer than spacing_m.

    Intermediate coordinates are linearly interpolated in lat/lng, and their
    cumulative distance is interpolated on the leg's own distance scale, so
    the original vertices keep their distances exactly.
    """
    if spacing_m <= 0:
        raise ValueError(f"spacing_m must be > 0, got {spacing_m}")
    if len(points) < 2:
        return list(points)

    dense: List[RoutePoint] = [points[0]]
    for start, end in zip(points, points[1:]):
        leg = end.distance_from_start - start.distance_from_start
        if leg > spacing_m:
            steps = int(math.ceil(leg / spacing_m))
            for j in range(1, steps):
                ratio = j * spacing_m / leg
                alt = None
                if start.altitude is not None and end.altitude is not None:
                    alt = start.altitude + (end.altitude - start.altitude) * ratio
                dense.append(RoutePoint(
                    latitude=start.latitude + (end.latitude - start.latitude) * ratio,
                    longitude=start.longitude + (end.longitude - start.longitude) * ratio,
                    distance_from_start=start.distance_from_start + j * spacing_m,
                    altitude=alt,
                ))
        dense.append(end)
    return dense


@dataclass(frozen=True)
class Course:
    """
    Immutable race course: checkpoints plus the route polyline.

    Invariants:
        - at least 2 checkpoints and 2 route points
        - checkpoint indexes are 0..N-1 in order (strictly increasing)
        - checkpoint ids are unique
        - checkpoint and route distances are non-decreasing

    Build with Course.build() rather than the raw constructor so the route
    is measured and densified consistently.
    """

    course_id: str
    checkpoints: Tuple[Checkpoint, ...]
    route: Tuple[RoutePoint, ...]
    discipline: Discipline = Discipline.RUN
    name: str = ""
    _by_id: Dict[str, Checkpoint] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        """Validate invariants and freeze numpy views of the route."""
        if not self.course_id:
            raise ValueError("course_id cannot be empty")
        if len(self.checkpoints) < 2:
            raise ValueError(
                f"Course '{self.course_id}' needs at least 2 checkpoints, got {len(self.checkpoints)}"
            )
        if len(self.route) < 2:
            raise ValueError(
                f"Course '{self.course_id}' needs at least 2 route points, got {len(self.route)}"
            )

        by_id: Dict[str, Checkpoint] = {}
        previous_distance = -1.0
        for position, checkpoint in enumerate(self.checkpoints):
            if checkpoint.index != position:
                raise ValueError(
                    f"Checkpoint indexes must be 0..N-1 in order, "
                    f"got {checkpoint.index} at position {position}"
                )
            if checkpoint.checkpoint_id in by_id:
                raise ValueError(f"Duplicate checkpoint id '{checkpoint.checkpoint_id}'")
            if checkpoint.distance_from_start < previous_distance:
                raise ValueError(
                    f"Checkpoint distances must be non-decreasing "
                    f"(checkpoint {checkpoint.index}: {checkpoint.distance_from_start} < {previous_distance})"
                )
            by_id[checkpoint.checkpoint_id] = checkpoint
            previous_distance = checkpoint.distance_from_start

        cumulative = np.array([p.distance_from_start for p in self.route], dtype=float)
        if np.any(np.diff(cumulative) < 0):
            raise ValueError(f"Route distances for course '{self.course_id}' must be non-decreasing")

        lats = np.array([p.latitude for p in self.route], dtype=float)
        lngs = np.array([p.longitude for p in self.route], dtype=float)
        for array in (lats, lngs, cumulative):
            array.flags.writeable = False

        object.__setattr__(self, '_by_id', by_id)
        object.__setattr__(self, '_lats', lats)
        object.__setattr__(self, '_lngs', lngs)
        object.__setattr__(self, '_cumulative', cumulative)

    @classmethod
    def build(
        cls,
        course_id: str,
        checkpoints: Sequence[Checkpoint],
        route: Optional[Sequence[Tuple[float, ...]]] = None,
        discipline: Discipline = Discipline.RUN,
        name: str = "",
        densify_spacing_m: float = DEFAULT_DENSIFY_SPACING_M,
    ) -> "Course":
        """
        Build a course from checkpoints and an optional route track.

        Without a route track, the checkpoint sequence is the polyline and
        each vertex takes its checkpoint's distance_from_start, which keeps
        the mapping axis identical to the checkpoint axis.

        Args:
            course_id: Course identifier
            checkpoints: Ordered checkpoints
            route: Optional raw (lat, lng[, alt]) track
            discipline: Event discipline
            name: Display name
            densify_spacing_m: Maximum leg length after densification
        """
        if route:
            points = measure_route(route)
        else:
            points = [
                RoutePoint(
                    latitude=cp.latitude,
                    longitude=cp.longitude,
                    distance_from_start=cp.distance_from_start,
                    altitude=cp.altitude,
                )
                for cp in checkpoints
            ]

        return cls(
            course_id=course_id,
            checkpoints=tuple(checkpoints),
            route=tuple(densify_route(points, densify_spacing_m)),
            discipline=discipline,
            name=name,
        )

    # ----- route arrays (read-only) -----

    @property
    def lats(self) -> np.ndarray:
        return self._lats

    @property
    def lngs(self) -> np.ndarray:
        return self._lngs

    @property
    def cumulative(self) -> np.ndarray:
        return self._cumulative

    @property
    def segment_count(self) -> int:
        """Number of route segments (vertices - 1)."""
        return len(self.route) - 1

    @property
    def total_distance(self) -> float:
        """Route length in meters."""
        return float(self._cumulative[-1])

    @property
    def mean_segment_length(self) -> float:
        return self.total_distance / self.segment_count if self.segment_count else 0.0

    # ----- checkpoints -----

    @property
    def terminal_index(self) -> int:
        """Index of the finish (last) checkpoint."""
        return len(self.checkpoints) - 1

    @property
    def finish(self) -> Checkpoint:
        return self.checkpoints[-1]

    def checkpoint(self, index: int) -> Checkpoint:
        return self.checkpoints[index]

    def checkpoint_by_id(self, checkpoint_id: str) -> Optional[Checkpoint]:
        return self._by_id.get(checkpoint_id)

    def find_first_checkpoint_beyond(self, distance: float) -> Optional[Checkpoint]:
        """First checkpoint whose distance_from_start is strictly greater than distance."""
        for checkpoint in self.checkpoints:
            if checkpoint.distance_from_start > distance:
                return checkpoint
        return None

    def discipline_at(self, last_crossed_index: int) -> Discipline:
        """
        Discipline in effect after crossing the given checkpoint.

        Single-discipline courses always return their own discipline. On a
        triathlon the leg is the type of the most recent SWIM/BIKE/RUN (or
        transition, on foot) checkpoint crossed; before any of those the
        swim leg applies.
        """
        if self.discipline != Discipline.TRIATHLON:
            return self.discipline

        for checkpoint in reversed(self.checkpoints[:max(last_crossed_index, -1) + 1]):
            leg = _LEG_BY_TYPE.get(checkpoint.checkpoint_type)
            if leg is not None:
                return leg
        return Discipline.SWIM

    def __repr__(self) -> str:
        return (
            f"Course(id={self.course_id!r}, checkpoints={len(self.checkpoints)}, "
            f"route_points={len(self.route)}, length={self.total_distance:.0f}m)"
        )
