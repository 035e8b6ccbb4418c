"""
Structured Log Event Types
==========================

Bounded Context: Observability Event Taxonomy

Typed event names for structured logging.

Event Naming Convention:
    <component>.<category>[.<action>]

    component: mqtt, ping, crossing, view, error
    category: connected, publish, received, rejected
    action: success, failed

Example Log Query (CloudWatch Insights):
    fields @timestamp, event, metadata.participant_id, metadata.reason
    | filter event = "ping.rejected"
    | stats count() by metadata.reason
"""

from enum import Enum


class LogEvent(str, Enum):
    """
    Typed log event names for structured logging.

    Categories:
    - mqtt.*: MQTT broker interactions
    - ping.*: Ping ingestion
    - crossing.*: Checkpoint crossings
    - view.*: Realtime view publication
    - error.*: Error conditions
    """

    # ========== MQTT Events ==========
    MQTT_CONNECTED = "mqtt.connected"
    MQTT_DISCONNECTED = "mqtt.disconnected"
    MQTT_PUBLISH_SUCCESS = "mqtt.publish.success"
    MQTT_PUBLISH_FAILED = "mqtt.publish.failed"

    # ========== Ping Events ==========
    PING_RECEIVED = "ping.received"
    """Ping message received and deserialized."""

    PING_ACCEPTED = "ping.accepted"
    """Ping applied to participant progress."""

    PING_REJECTED = "ping.rejected"
    """Ping rejected (malformed, off course, implausible speed, closed session)."""

    # ========== Crossing Events ==========
    CROSSING_DETECTED = "crossing.detected"
    """Checkpoint crossing detected."""

    CROSSING_SERIALIZED = "crossing.serialized"
    """Crossing message serialized to JSON."""

    CROSSING_RECEIVED = "crossing.received"
    """Crossing message received by a subscriber."""

    # ========== View Events ==========
    VIEW_SERIALIZED = "view.serialized"
    """Realtime view message serialized to JSON."""

    VIEW_PUBLISHED = "view.published"
    """Realtime view published."""

    # ========== Error Events ==========
    SERIALIZATION_ERROR = "error.serialization"
    DESERIALIZATION_ERROR = "error.deserialization"
    SCHEMA_VALIDATION_ERROR = "error.schema_validation"
    MQTT_CONNECTION_ERROR = "error.mqtt_connection"
    MQTT_PUBLISH_ERROR = "error.mqtt_publish"
    TRACKING_ERROR = "error.tracking"
    """Ping referenced an unknown course/participant or unavailable course data."""


# Event categories for filtering
MQTT_EVENTS = {
    LogEvent.MQTT_CONNECTED,
    LogEvent.MQTT_DISCONNECTED,
    LogEvent.MQTT_PUBLISH_SUCCESS,
    LogEvent.MQTT_PUBLISH_FAILED,
}

PING_EVENTS = {
    LogEvent.PING_RECEIVED,
    LogEvent.PING_ACCEPTED,
    LogEvent.PING_REJECTED,
}

CROSSING_EVENTS = {
    LogEvent.CROSSING_DETECTED,
    LogEvent.CROSSING_SERIALIZED,
    LogEvent.CROSSING_RECEIVED,
}

VIEW_EVENTS = {
    LogEvent.VIEW_SERIALIZED,
    LogEvent.VIEW_PUBLISHED,
}

ERROR_EVENTS = {
    LogEvent.SERIALIZATION_ERROR,
    LogEvent.DESERIALIZATION_ERROR,
    LogEvent.SCHEMA_VALIDATION_ERROR,
    LogEvent.MQTT_CONNECTION_ERROR,
    LogEvent.MQTT_PUBLISH_ERROR,
    LogEvent.TRACKING_ERROR,
}
