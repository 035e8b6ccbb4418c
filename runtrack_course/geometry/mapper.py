"""
Course Position Mapper
======================

Stateless snapping of GPS pings onto a course's distance-from-start axis.

Design:
- No per-participant state: the caller injects the search hint and the
  previous accepted ping, and keeps the result (functional style)
- Bounded search window around the hint (forward bias, small backward slack)
- Vectorised haversine + segment projection over the window only
- Rejections are exceptions (StalePingError, OutlierPingError); nothing
  is mutated on rejection because nothing is owned here
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from runtrack_course.errors import (
    MalformedPingError,
    OutlierPingError,
    RejectReason,
    StalePingError,
)
from runtrack_course.geometry.course import Course, Discipline
from runtrack_course.geometry.geodesy import (
    bearing_deg,
    bearing_difference,
    haversine_m,
    haversine_many,
    project_onto_segments,
)

DEFAULT_MAX_SPEED_KMH: Dict[Discipline, float] = {
    Discipline.RUN: 40.0,
    Discipline.BIKE: 100.0,
    Discipline.SWIM: 10.0,
    Discipline.TRIATHLON: 100.0,
}


def _finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _first_run(mask: np.ndarray) -> np.ndarray:
    """Keep only the first contiguous run of True values."""
    hits = np.flatnonzero(mask)
    start = end = int(hits[0])
    while end + 1 < len(mask) and mask[end + 1]:
        end += 1
    run = np.zeros_like(mask)
    run[start:end + 1] = True
    return run


@dataclass(frozen=True)
class Ping:
    """
    Raw GPS fix from a participant device.

    Timestamps are epoch seconds. Construction validates shape and ranges
    and raises MalformedPingError on anything unusable.
    """

    latitude: float
    longitude: float
    timestamp: float
    altitude: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None

    def __post_init__(self):
        """Validate coordinates, timestamp and optional fields."""
        if not _finite(self.latitude) or not -90.0 <= self.latitude <= 90.0:
            raise MalformedPingError(f"Invalid latitude: {self.latitude!r}")
        if not _finite(self.longitude) or not -180.0 <= self.longitude <= 180.0:
            raise MalformedPingError(f"Invalid longitude: {self.longitude!r}")
        if not _finite(self.timestamp) or self.timestamp < 0:
            raise MalformedPingError(f"Invalid timestamp: {self.timestamp!r}")
        if self.altitude is not None and not _finite(self.altitude):
            raise MalformedPingError(f"Invalid altitude: {self.altitude!r}")
        if self.heading is not None and (not _finite(self.heading) or not 0.0 <= self.heading <= 360.0):
            raise MalformedPingError(f"Invalid heading: {self.heading!r}")
        if self.speed is not None and (not _finite(self.speed) or self.speed < 0):
            raise MalformedPingError(f"Invalid speed: {self.speed!r}")


@dataclass(frozen=True)
class MappedPosition:
    """
    Result of snapping a ping onto a course.

    Attributes:
        distance_along: Distance from start along the route (meters)
        offset_m: Perpendicular distance from the route (meters)
        segment_index: Resolved route segment (next search hint)
        snapped_latitude, snapped_longitude: On-course point
        route_bearing: Bearing of the resolved segment (degrees)
        nearest_vertex_m: Distance to the closest window vertex (meters)
        implied_speed_mps: Straight-line speed since the previous ping, if any
    """

    distance_along: float
    offset_m: float
    segment_index: int
    snapped_latitude: float
    snapped_longitude: float
    route_bearing: float
    nearest_vertex_m: float
    implied_speed_mps: Optional[float] = None


@dataclass
class CoursePositionMapper:
    """
    Maps pings to course distance within a bounded search window.

    Window (segment indexes): [hint - backward_slack, hint + forward]
    where forward starts at forward_window and grows with
    max_speed * dt / mean_segment_length, never beyond max_forward_window.
    A participant's first ping has no dt and searches the full
    max_forward_window from the hint.

    Usage:
        mapper = CoursePositionMapper(lateral_tolerance_m=100.0)
        mapped = mapper.map(course, ping, hint_index=progress.segment_index,
                            previous=progress.last_ping)
    """

    lateral_tolerance_m: float = 100.0
    backward_slack: int = 3
    forward_window: int = 20
    max_forward_window: int = 500
    heading_weight: float = 0.0
    teleport_min_distance_m: float = 25.0
    max_speed_kmh: Dict[Discipline, float] = field(default_factory=lambda: dict(DEFAULT_MAX_SPEED_KMH))

    def __post_init__(self):
        if self.lateral_tolerance_m <= 0:
            raise ValueError(f"lateral_tolerance_m must be > 0, got {self.lateral_tolerance_m}")
        if self.backward_slack < 0:
            raise ValueError(f"backward_slack must be >= 0, got {self.backward_slack}")
        if self.forward_window < 1:
            raise ValueError(f"forward_window must be >= 1, got {self.forward_window}")
        if self.max_forward_window < self.forward_window:
            raise ValueError(
                f"max_forward_window ({self.max_forward_window}) must be >= "
                f"forward_window ({self.forward_window})"
            )
        if not 0.0 <= self.heading_weight <= 1.0:
            raise ValueError(f"heading_weight must be in [0, 1], got {self.heading_weight}")
        if self.teleport_min_distance_m < 0:
            raise ValueError(f"teleport_min_distance_m must be >= 0, got {self.teleport_min_distance_m}")

    def max_speed_mps(self, discipline: Discipline) -> float:
        """Plausible-speed ceiling for a discipline in m/s."""
        kmh = self.max_speed_kmh.get(discipline, self.max_speed_kmh.get(Discipline.TRIATHLON, 100.0))
        return kmh / 3.6

    def search_window(
        self,
        course: Course,
        hint_index: int,
        dt: Optional[float],
        discipline: Discipline,
    ) -> tuple:
        """
        Segment index range [lo, hi) to search.

        Args:
            course: Course being searched
            hint_index: Last resolved segment index
            dt: Seconds since the previous accepted ping (None for first ping)
            discipline: Discipline in effect (selects the speed ceiling)
        """
        hint = min(max(hint_index, 0), course.segment_count - 1)

        if dt is None:
            forward = self.max_forward_window
        else:
            forward = self.forward_window
            mean_len = course.mean_segment_length
            if mean_len > 0:
                reach = math.ceil(self.max_speed_mps(discipline) * dt / mean_len) + 1
                forward = max(forward, reach)
            forward = min(forward, self.max_forward_window)

        lo = max(0, hint - self.backward_slack)
        hi = min(course.segment_count, hint + forward + 1)
        return lo, hi

    def map(
        self,
        course: Course,
        ping: Ping,
        hint_index: int = 0,
        previous: Optional[Ping] = None,
        discipline: Optional[Discipline] = None,
        previous_distance: Optional[float] = None,
    ) -> MappedPosition:
        """
        Snap a ping onto the course.

        Where the route passes the same ground more than once (loops,
        out-and-back legs, laps) several segments can lie within tolerance.
        With a previous distance, only segments reachable along the course
        at the speed ceiling are candidates; without one (first ping), the
        earliest in-tolerance stretch of route wins.

        Args:
            course: Immutable course geometry
            ping: Ping to map
            hint_index: Last resolved segment index for this participant
            previous: Last accepted ping (None for the first ping)
            discipline: Discipline in effect (defaults to the course's)
            previous_distance: Distance along the course at the previous ping

        Returns:
            MappedPosition

        Raises:
            StalePingError: ping.timestamp <= previous.timestamp
            OutlierPingError: off course or implausible speed
        """
        discipline = discipline or course.discipline
        ceiling = self.max_speed_mps(discipline)

        dt = None
        implied_speed = None
        if previous is not None:
            dt = ping.timestamp - previous.timestamp
            if dt <= 0:
                raise StalePingError(ping.timestamp, previous.timestamp)

            moved = haversine_m(previous.latitude, previous.longitude, ping.latitude, ping.longitude)
            implied_speed = moved / dt
            if moved > self.teleport_min_distance_m and implied_speed > ceiling:
                raise OutlierPingError(
                    RejectReason.IMPLAUSIBLE_SPEED,
                    f"Implied speed {implied_speed * 3.6:.1f} km/h exceeds "
                    f"{ceiling * 3.6:.1f} km/h ({discipline.value})",
                )

        lo, hi = self.search_window(course, hint_index, dt, discipline)

        lats = course.lats
        lngs = course.lngs
        offsets, fractions = project_onto_segments(
            ping.latitude, ping.longitude,
            lats[lo:hi], lngs[lo:hi],
            lats[lo + 1:hi + 1], lngs[lo + 1:hi + 1],
        )

        within = offsets <= self.lateral_tolerance_m
        if not np.any(within):
            raise OutlierPingError(
                RejectReason.OFF_COURSE,
                f"Ping is {float(offsets.min()):.1f} m off course "
                f"(tolerance {self.lateral_tolerance_m:.1f} m, segments {lo}-{hi})",
            )

        # Weighted form keeps fraction == 1.0 exactly on the next vertex
        cumulative = course.cumulative
        along = cumulative[lo:hi] * (1.0 - fractions) + cumulative[lo + 1:hi + 1] * fractions

        if dt is None or previous_distance is None:
            candidates = _first_run(within)
        else:
            floor = previous_distance - self.backward_slack * course.mean_segment_length - self.lateral_tolerance_m
            reach = previous_distance + ceiling * dt + self.lateral_tolerance_m
            candidates = within & (along >= floor) & (along <= reach)
            if not np.any(candidates):
                if np.any(within & (along > reach)):
                    raise OutlierPingError(
                        RejectReason.IMPLAUSIBLE_SPEED,
                        f"Nearest course match at {float(along[within].min()):.1f} m is beyond "
                        f"{reach:.1f} m reachable from {previous_distance:.1f} m in {dt:.1f}s",
                    )
                raise OutlierPingError(
                    RejectReason.OFF_COURSE,
                    f"No course match near {previous_distance:.1f} m (segments {lo}-{hi})",
                )

        best = self._pick_segment(course, ping, lo, offsets, candidates)
        segment = lo + best
        fraction = float(fractions[best])
        distance_along = float(along[best])

        if dt is not None and previous_distance is not None:
            progressed = distance_along - previous_distance
            if progressed > self.teleport_min_distance_m and progressed / dt > ceiling:
                raise OutlierPingError(
                    RejectReason.IMPLAUSIBLE_SPEED,
                    f"Course progress {progressed / dt * 3.6:.1f} km/h exceeds "
                    f"{ceiling * 3.6:.1f} km/h ({discipline.value})",
                )

        snapped_lat = float(lats[segment] * (1.0 - fraction) + lats[segment + 1] * fraction)
        snapped_lng = float(lngs[segment] * (1.0 - fraction) + lngs[segment + 1] * fraction)

        vertex_distances = haversine_many(ping.latitude, ping.longitude, lats[lo:hi + 1], lngs[lo:hi + 1])

        return MappedPosition(
            distance_along=distance_along,
            offset_m=float(offsets[best]),
            segment_index=segment,
            snapped_latitude=snapped_lat,
            snapped_longitude=snapped_lng,
            route_bearing=bearing_deg(lats[segment], lngs[segment], lats[segment + 1], lngs[segment + 1]),
            nearest_vertex_m=float(vertex_distances.min()),
            implied_speed_mps=implied_speed,
        )

    def _pick_segment(
        self,
        course: Course,
        ping: Ping,
        lo: int,
        offsets: np.ndarray,
        candidates: np.ndarray,
    ) -> int:
        """Window-relative index of the best candidate segment."""
        indexes = np.flatnonzero(candidates)
        if self.heading_weight <= 0.0 or ping.heading is None:
            return int(indexes[np.argmin(offsets[indexes])])

        w = self.heading_weight
        lats, lngs = course.lats, course.lngs
        best, best_score = -1, math.inf
        for i in indexes:
            seg = lo + int(i)
            seg_bearing = bearing_deg(lats[seg], lngs[seg], lats[seg + 1], lngs[seg + 1])
            score = (
                (1.0 - w) * offsets[i] / self.lateral_tolerance_m
                + w * bearing_difference(ping.heading, seg_bearing) / 180.0
            )
            if score < best_score:
                best, best_score = int(i), score
        return best
