"""
Runtrack Course Core v1.0
=========================

Bounded Context: Course-relative tracking of race participants.

Design Philosophy:
- Separation of Concerns: Geometry and Analytics separated
- Geometry is immutable and shared, analytics takes state in and out
- Fail fast on bad course data, never on a single bad ping
- numpy for the per-ping window math, plain Python everywhere else

Architecture:

    runtrack_course/
    ├── geometry/          # Pure geometry (immutable, stateless)
    │   ├── geodesy.py     # haversine, bearings, segment projection
    │   ├── course.py      # Course, Checkpoint, RoutePoint
    │   ├── mapper.py      # Ping, CoursePositionMapper
    │   └── smoothing.py   # KalmanSmoother (optional)
    │
    ├── analytics/         # Crossings, lifecycle, standings, views
    │   ├── crossing.py    # CheckpointCrossingDetector, CrossingEvent
    │   ├── session.py     # TrackingSessionStateMachine
    │   ├── ranking.py     # RankingEngine, Standings
    │   └── aggregator.py  # LocationAggregator, RealtimeView
    │
    └── errors.py          # Core error taxonomy

Usage:

    # 1. Build geometry (immutable)
    from runtrack_course import Course, Checkpoint, CheckpointType

    course = Course.build("10k", checkpoints)

    # 2. Map a ping (stateless)
    from runtrack_course import CoursePositionMapper, Ping

    mapper = CoursePositionMapper(lateral_tolerance_m=100.0)
    mapped = mapper.map(course, Ping(latitude=..., longitude=..., timestamp=...))

    # 3. Detect crossings (state in, state out)
    from runtrack_course import CheckpointCrossingDetector

    events, last_index = CheckpointCrossingDetector().detect(
        course, "p1", -1, None, (mapped.distance_along, ping.timestamp), start_ts
    )

    # 4. Rank and aggregate
    from runtrack_course import RankingEngine, LocationAggregator

    standings = RankingEngine().recompute("10k", inputs)
    view = LocationAggregator().aggregate("10k", positions, 14, standings.top(3))
"""

# Geometry Layer (immutable, stateless)
from runtrack_course.geometry.course import Checkpoint, CheckpointType, Course, Discipline, RoutePoint
from runtrack_course.geometry.mapper import CoursePositionMapper, MappedPosition, Ping
from runtrack_course.geometry.smoothing import KalmanSmoother, KalmanState

# Analytics Layer
from runtrack_course.analytics.crossing import CheckpointCrossingDetector, CrossingEvent
from runtrack_course.analytics.session import (
    ParticipationStatus,
    SessionEvent,
    TrackingSessionStateMachine,
    TrackingStatus,
)
from runtrack_course.analytics.ranking import RankingEngine, RankingEntry, RankingInput, Standings
from runtrack_course.analytics.aggregator import (
    AggregatedPoint,
    LivePosition,
    LocationAggregator,
    RealtimeView,
)

# Errors
from runtrack_course.errors import (
    InvalidTransitionError,
    MalformedPingError,
    OutlierPingError,
    RejectReason,
    StalePingError,
    TrackingError,
)

__all__ = [
    # Geometry
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
    # Analytics
    "CheckpointCrossingDetector",
    "CrossingEvent",
    "ParticipationStatus",
    "SessionEvent",
    "TrackingSessionStateMachine",
    "TrackingStatus",
    "RankingEngine",
    "RankingEntry",
    "RankingInput",
    "Standings",
    "AggregatedPoint",
    "LivePosition",
    "LocationAggregator",
    "RealtimeView",
    # Errors
    "InvalidTransitionError",
    "MalformedPingError",
    "OutlierPingError",
    "RejectReason",
    "StalePingError",
    "TrackingError",
]

__version__ = "1.0.0"
