"""
Structured JSON Logger
=====================

Bounded Context: Observability Infrastructure

One JSON object per log line, with a typed event name and free-form
metadata. Wraps the standard logging module, so handlers, levels and
thread-safety come from there.

Example:
    >>> logger = StructuredLogger(component="tracker")
    >>> logger.info(
    ...     event=LogEvent.PING_REJECTED,
    ...     message="Ping rejected",
    ...     metadata={'participant_id': 'p1', 'reason': 'off_course'}
    ... )

Output:
    {"timestamp": "2025-10-24T15:30:45.123456+00:00", "level": "INFO",
     "component": "tracker", "event": "ping.rejected",
     "message": "Ping rejected",
     "metadata": {"participant_id": "p1", "reason": "off_course"}}
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .events import LogEvent


class StructuredLogger:
    """
    JSON structured logger.

    Attributes:
        component: Component name (e.g., "tracker", "subscriber")
        logger: Underlying Python logger instance
    """

    def __init__(
        self,
        component: str,
        level: int = logging.INFO,
        logger_name: Optional[str] = None
    ):
        """
        Initialize structured logger.

        Args:
            component: Component identifier
            level: Logging level (default: INFO)
            logger_name: Custom logger name (default: runtrack_mqtt.<component>)
        """
        self.component = component
        self.logger_name = logger_name or f"runtrack_mqtt.{component}"
        self.logger = logging.getLogger(self.logger_name)
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)
            # Lines are already JSON; root handlers would re-wrap them
            self.logger.propagate = False

    def _log(
        self,
        level: int,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return

        entry: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': logging.getLevelName(level),
            'component': self.component,
            'event': event.value,
            'message': message,
        }
        if metadata:
            entry['metadata'] = metadata
        if exc_info is not None:
            entry['exception'] = {
                'type': type(exc_info).__name__,
                'message': str(exc_info),
            }

        self.logger.log(level, json.dumps(entry, default=str))

    def debug(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.DEBUG, event, message, metadata)

    def info(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.INFO, event, message, metadata)

    def warning(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.WARNING, event, message, metadata)

    def error(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """
        Log ERROR level message.

        Example:
            >>> try:
            ...     PingMessage.from_dict(data)
            ... except ValueError as e:
            ...     logger.error(
            ...         event=LogEvent.SCHEMA_VALIDATION_ERROR,
            ...         message="Ping failed schema validation",
            ...         exc_info=e,
            ...     )
        """
        self._log(logging.ERROR, event, message, metadata, exc_info)

    def set_level(self, level: int) -> None:
        """Change logging level dynamically."""
        self.logger.setLevel(level)


class JSONFormatter(logging.Formatter):
    """Passes through the JSON line built by StructuredLogger."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


def create_logger(component: str, level: int = logging.INFO) -> StructuredLogger:
    """
    Factory function to create configured StructuredLogger.

    Example:
        >>> logger = create_logger("tracker", level=logging.DEBUG)
    """
    return StructuredLogger(component=component, level=level)
