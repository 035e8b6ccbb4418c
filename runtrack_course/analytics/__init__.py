"""
Analytics Layer
===============

Bounded Context: Crossing detection, session lifecycle, standings and
display aggregation.

Responsibilities:
- Turn course distance into checkpoint crossings
- Govern session status transitions
- Rank participants from progress snapshots
- Aggregate live positions per zoom level

Design Philosophy:
- Detectors and state machines are stateless (state in, state out)
- Immutable outputs (CrossingEvent, Standings, RealtimeView)
- Only RankingEngine keeps state (its standings cache, lock-guarded)
"""

from runtrack_course.analytics.aggregator import (
    AggregatedPoint,
    LivePosition,
    LocationAggregator,
    RealtimeView,
)
from runtrack_course.analytics.crossing import CheckpointCrossingDetector, CrossingEvent
from runtrack_course.analytics.ranking import (
    RankingEngine,
    RankingEntry,
    RankingInput,
    Standings,
)
from runtrack_course.analytics.session import (
    ParticipationStatus,
    SessionEvent,
    TrackingSessionStateMachine,
    TrackingStatus,
)

__all__ = [
    "AggregatedPoint",
    "LivePosition",
    "LocationAggregator",
    "RealtimeView",
    "CheckpointCrossingDetector",
    "CrossingEvent",
    "RankingEngine",
    "RankingEntry",
    "RankingInput",
    "Standings",
    "ParticipationStatus",
    "SessionEvent",
    "TrackingSessionStateMachine",
    "TrackingStatus",
]
