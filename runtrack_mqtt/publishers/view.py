"""
Realtime View Publisher
=======================

Bounded Context: Spectator View Message Production

Views are published retained, one topic per course and zoom level, so a
spectator subscribing late receives the latest view immediately.

Message Flow:
    LocationAggregator → RealtimeViewMessage → RealtimeViewPublisher → MQTT Broker
"""

from typing import Dict, Any, Optional
from .base import BasePublisher
from ..schemas import RealtimeViewMessage
from ..logging import StructuredLogger, LogEvent


class RealtimeViewPublisher(BasePublisher):
    """
    Publisher for realtime view messages.

    Attributes:
        topic: Template with {course_id} and {zoom} placeholders

    Example:
        >>> publisher = RealtimeViewPublisher(
        ...     broker_host="localhost",
        ...     topic="runtrack/views/{course_id}/{zoom}",
        ...     logger=logger,
        ... )
        >>> publisher.view_topic("city-10k", 14)
        'runtrack/views/city-10k/14'
    """

    def __init__(
        self,
        broker_host: str,
        topic: str,
        logger: StructuredLogger,
        broker_port: int = 1883,
        client_id: str = "runtrack_view_publisher",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
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

    def view_topic(self, course_id: str, zoom_level: int) -> str:
        return self.topic.format(course_id=course_id, zoom=zoom_level)

    def format_message(self, view_msg: RealtimeViewMessage) -> Dict[str, Any]:
        """
        Format RealtimeViewMessage to JSON-compatible dict.

        Raises:
            ValueError: If view_msg cannot be serialized
        """
        try:
            formatted = view_msg.to_dict()
        except (AttributeError, TypeError, ValueError) as e:
            self.logger.error(
                event=LogEvent.SERIALIZATION_ERROR,
                message="Failed to serialize view message",
                exc_info=e,
                metadata={'course_id': getattr(view_msg, 'course_id', None)}
            )
            raise ValueError(f"Failed to format view message: {e}")

        self.logger.debug(
            event=LogEvent.VIEW_SERIALIZED,
            message="Serialized view message",
            metadata={
                'course_id': view_msg.course_id,
                'zoom_level': view_msg.zoom_level,
                'point_count': view_msg.point_count,
            }
        )
        return formatted

    def publish_view(self, view_msg: RealtimeViewMessage) -> bool:
        """Publish one view (retained)."""
        try:
            message_data = self.format_message(view_msg)
        except ValueError:
            return False

        topic = self.view_topic(view_msg.course_id, view_msg.zoom_level)
        success = self.publish(message_data, retain=True, topic=topic)
        if success:
            self.logger.debug(
                event=LogEvent.VIEW_PUBLISHED,
                message=f"Published view with {view_msg.point_count} points",
                metadata={
                    'course_id': view_msg.course_id,
                    'zoom_level': view_msg.zoom_level,
                    'participant_count': view_msg.participant_count,
                    'topic': topic,
                }
            )
        return success
