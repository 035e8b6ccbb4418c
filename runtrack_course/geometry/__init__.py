"""
Geometry Layer
==============

Bounded Context: Course geometry and ping snapping.

Responsibilities:
- Course representation (immutable)
- Great-circle distances and bearings
- Projection of pings onto the route polyline
- NO per-participant state, NO ranking, NO publishing

Design Philosophy:
- Pure functions where possible
- Immutable data structures
- Fail-fast validation
- Zero side effects
"""

from runtrack_course.geometry.course import (
    Checkpoint,
    CheckpointType,
    Course,
    Discipline,
    RoutePoint,
)
from runtrack_course.geometry.mapper import CoursePositionMapper, MappedPosition, Ping
from runtrack_course.geometry.smoothing import KalmanSmoother, KalmanState

__all__ = [
    "Checkpoint",
    "CheckpointType",
    "Course",
    "Discipline",
    "RoutePoint",
    "CoursePositionMapper",
    "MappedPosition",
    "Ping",
    "KalmanSmoother",
    "KalmanState",
]
