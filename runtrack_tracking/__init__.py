"""
runtrack_tracking - Live Race Tracking Service

This package provides the tracking service that ingests participant GPS
pings, maintains live progress and standings, and publishes crossings and
realtime views via MQTT.

Architecture:
- TrackingService: Main orchestrator
- ProgressTracker: Per-participant progress, applied atomically
- Course / hot-state stores: read/write contracts plus in-memory and YAML backends
- TrackingConfig: Configuration management

Threading Model:
- Ping Subscriber Thread (paho-mqtt internal, calls ingest_ping)
- Control Plane Thread (paho-mqtt internal for commands)
- Sweeper Thread (our thread for silence timeouts)
- MQTT Publisher Thread (our thread for publishing)
"""

from runtrack_tracking.config import TrackingConfig
from runtrack_tracking.progress import ParticipantProgress, PingOutcome, ProgressTracker, SplitTime
from runtrack_tracking.stores import (
    InMemoryCourseStore,
    InMemoryHotStateStore,
    Participant,
    YamlCourseStore,
)
from runtrack_tracking.service import TrackingService

__all__ = [
    "TrackingConfig",
    "ParticipantProgress",
    "PingOutcome",
    "ProgressTracker",
    "SplitTime",
    "InMemoryCourseStore",
    "InMemoryHotStateStore",
    "Participant",
    "YamlCourseStore",
    "TrackingService",
]
