"""
Runtrack MQTT Communication Package
===================================

Bounded Context: Communication Protocol for Live Race Tracking

MQTT-based messaging between participant devices, the tracking service and
spectator clients.

Architecture:
- schemas/: Immutable data structures with type safety
- publishers/: Message producers (CrossingEventPublisher, RealtimeViewPublisher)
- subscriber: Ping consumer (PingSubscriber)
- logging/: Structured JSON logging for observability

Design Philosophy:
- Cohesion > Location: Each module has one reason to change
- Type Safety: Leverage Python typing for correctness
- Immutability: Use frozen dataclasses for message DTOs
- Observability: Structured logs (JSON) for production queries

Public API
----------
Schemas:
    Timestamp, PingMessage, CrossingEventMessage
    ViewPoint, StandingEntry, RealtimeViewMessage

Publishers:
    CrossingEventPublisher, RealtimeViewPublisher
    BasePublisher (for custom publishers)

Subscriber:
    PingSubscriber

Logging:
    LogEvent, StructuredLogger, create_logger
"""

__version__ = "1.0.0"

from .schemas import (
    SCHEMA_VERSION,
    Timestamp,
    PingMessage,
    CrossingEventMessage,
    ViewPoint,
    StandingEntry,
    RealtimeViewMessage,
)

from .publishers import (
    BasePublisher,
    CrossingEventPublisher,
    RealtimeViewPublisher,
)

from .subscriber import PingSubscriber

from .logging import (
    LogEvent,
    StructuredLogger,
    create_logger,
)

__all__ = [
    '__version__',
    # Schemas
    'SCHEMA_VERSION',
    'Timestamp',
    'PingMessage',
    'CrossingEventMessage',
    'ViewPoint',
    'StandingEntry',
    'RealtimeViewMessage',
    # Publishers
    'BasePublisher',
    'CrossingEventPublisher',
    'RealtimeViewPublisher',
    # Subscriber
    'PingSubscriber',
    # Logging
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
