"""
Crossing Event Publisher
========================

Bounded Context: Checkpoint Crossing Message Production

Message Flow:
    ProgressTracker → CrossingEventMessage → CrossingEventPublisher → MQTT Broker

Example:
    >>> from runtrack_mqtt.publishers import CrossingEventPublisher
    >>> from runtrack_mqtt.logging import create_logger
    >>>
    >>> publisher = CrossingEventPublisher(
    ...     broker_host="localhost",
    ...     topic="runtrack/crossings",
    ...     logger=create_logger("tracking"),
    ... )
    >>> publisher.connect()
    >>> publisher.publish_crossing(msg)
"""

from typing import Dict, Any, Optional
from .base import BasePublisher
from ..schemas import CrossingEventMessage
from ..logging import StructuredLogger, LogEvent


class CrossingEventPublisher(BasePublisher):
    """
    Publisher for checkpoint crossing messages.

    Crossings are sent at QoS 1; consumers de-duplicate on
    (participant_id, course_id, checkpoint_index).
    """

    def __init__(
        self,
        broker_host: str,
        topic: str,
        logger: StructuredLogger,
        broker_port: int = 1883,
        client_id: str = "runtrack_crossing_publisher",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 1
    ):
        super().__init__(
            broker_host=broker_host,
            broker_port=broker_port,
            topic=topic,
            client_id=client_id,
            logger=logger,
            username=username,
            password=password,
            qos=qos
        )

    def format_message(self, crossing_msg: CrossingEventMessage) -> Dict[str, Any]:
        """
        Format CrossingEventMessage to JSON-compatible dict.

        Raises:
            ValueError: If crossing_msg cannot be serialized
        """
        try:
            formatted = crossing_msg.to_dict()
        except (AttributeError, TypeError, ValueError) as e:
            self.logger.error(
                event=LogEvent.SERIALIZATION_ERROR,
                message="Failed to serialize crossing message",
                exc_info=e,
                metadata={'participant_id': getattr(crossing_msg, 'participant_id', None)}
            )
            raise ValueError(f"Failed to format crossing message: {e}")

        self.logger.debug(
            event=LogEvent.CROSSING_SERIALIZED,
            message="Serialized crossing message",
            metadata={
                'participant_id': crossing_msg.participant_id,
                'course_id': crossing_msg.course_id,
                'checkpoint_index': crossing_msg.checkpoint_index,
            }
        )
        return formatted

    def publish_crossing(self, crossing_msg: CrossingEventMessage) -> bool:
        """
        Publish one crossing.

        Returns:
            True if published successfully, False otherwise
        """
        try:
            message_data = self.format_message(crossing_msg)
        except ValueError:
            return False

        success = self.publish(message_data)
        if success:
            self.logger.info(
                event=LogEvent.CROSSING_DETECTED,
                message=f"Published crossing of {crossing_msg.checkpoint_id}",
                metadata={
                    'participant_id': crossing_msg.participant_id,
                    'course_id': crossing_msg.course_id,
                    'checkpoint_index': crossing_msg.checkpoint_index,
                    'is_terminal': crossing_msg.is_terminal,
                }
            )
        return success
