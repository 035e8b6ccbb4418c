"""
Structured Logging for Runtrack MQTT
====================================

Bounded Context: Observability

JSON-structured logging for the messaging edge.

Design:
- JSON output (parseable by ELK, CloudWatch, Loki)
- Typed events (enums prevent typos)
- Contextual metadata (participant_id, course_id, topic)
- Thread-safe

Public API
----------
    LogEvent: Typed event names (enum)
    StructuredLogger: JSON logger implementation
    create_logger: Factory function
"""

from .events import LogEvent
from .structured import StructuredLogger, create_logger

__all__ = [
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
