"""
Runtrack MQTT Schemas
=====================

Bounded Context: Data Structures

Immutable, typed data structures for MQTT messages.

Design:
- Frozen dataclasses (immutability)
- to_dict() for JSON serialization
- from_dict() for deserialization
- Schema versioning for evolution

Public API
----------
Common Types:
    Timestamp: ISO 8601 timestamp wrapper
    parse_epoch: wire timestamp to epoch seconds

Inbound:
    PingMessage: GPS fix from a participant device

Outbound:
    CrossingEventMessage: One checkpoint crossing
    ViewPoint, StandingEntry, RealtimeViewMessage: Spectator view
"""

from .common import SCHEMA_VERSION, Timestamp, parse_epoch
from .ping import PingMessage
from .crossing import CrossingEventMessage
from .view import RealtimeViewMessage, StandingEntry, ViewPoint

__all__ = [
    'SCHEMA_VERSION',
    'Timestamp',
    'parse_epoch',
    'PingMessage',
    'CrossingEventMessage',
    'RealtimeViewMessage',
    'StandingEntry',
    'ViewPoint',
]
