"""
Test MQTT Pub/Sub (Without Real Broker)
========================================

This script tests the publish/subscribe flow without requiring a real
MQTT broker, by calling the message handlers directly.

Usage:
    source .venv/bin/activate && python test_mqtt_pubsub.py
"""

import json
import math

import pytest

from runtrack_control import CommandRegistry, MQTTControlPlane
from runtrack_control.registry import CommandNotAvailableError, CommandValidationError
from runtrack_course.analytics.aggregator import LivePosition, LocationAggregator
from runtrack_course.analytics.crossing import CrossingEvent
from runtrack_course.analytics.ranking import RankingEngine, RankingInput
from runtrack_course.analytics.session import ParticipationStatus
from runtrack_mqtt import (
    CrossingEventPublisher,
    PingSubscriber,
    RealtimeViewPublisher,
    create_logger,
)
from runtrack_mqtt.schemas import (
    CrossingEventMessage,
    PingMessage,
    RealtimeViewMessage,
    Timestamp,
)
from runtrack_tracking.errors import UnknownParticipantOrCourseError


def test_message_serialization():
    """Test that messages can be serialized and deserialized."""
    print("\n" + "=" * 60)
    print("TEST: Message Serialization/Deserialization")
    print("=" * 60)

    logger = create_logger("test")

    # 1. Crossing publisher + message
    crossing_pub = CrossingEventPublisher(
        broker_host="localhost",
        topic="runtrack/data/crossings/test",
        logger=logger,
    )
    print("\n✓ CrossingEventPublisher created")

    event = CrossingEvent(
        participant_id="p-001",
        course_id="city-10k",
        checkpoint_index=2,
        checkpoint_id="FINISH",
        timestamp=1761300000.5,
        is_terminal=True,
    )
    crossing_msg = CrossingEventMessage.from_event(event, service_id="tracking_01", elapsed_time=3600.5)
    print(f"✓ Created CrossingEventMessage for {crossing_msg.checkpoint_id}")

    # 2. Serialize (what publisher does)
    json_str = json.dumps(crossing_pub.format_message(crossing_msg))
    print(f"✓ Serialized to JSON ({len(json_str)} bytes)")

    # 3. Deserialize (what a consumer does)
    reconstructed = CrossingEventMessage.from_dict(json.loads(json_str))
    assert reconstructed.participant_id == "p-001"
    assert reconstructed.checkpoint_index == 2
    assert reconstructed.is_terminal is True
    assert reconstructed.elapsed_time == pytest.approx(3600.5)
    assert reconstructed.crossing_time == pytest.approx(1761300000.5)
    print("✓ CrossingEventMessage reconstructed correctly")

    # 4. Ping message (epoch and ISO timestamps)
    ping = PingMessage.from_dict({
        "participant_id": "p-001",
        "course_id": "city-10k",
        "latitude": 37.5665,
        "longitude": 126.978,
        "timestamp": "2025-10-24T09:00:00Z",
    })
    assert ping.timestamp == pytest.approx(Timestamp(value="2025-10-24T09:00:00+00:00").to_epoch())
    again = PingMessage.from_dict(json.loads(json.dumps(ping.to_dict())))
    assert again.timestamp == pytest.approx(ping.timestamp)
    assert again.altitude is None
    print("✓ PingMessage parsed from ISO timestamp and re-serialized")

    # 5. Realtime view message
    engine = RankingEngine()
    standings = engine.compute("city-10k", [
        RankingInput("p-001", ParticipationStatus.FINISHED, 10000.0, 2, 1761300000.0, 3600.0, "Ana", "101"),
        RankingInput("p-002", ParticipationStatus.IN_PROGRESS, 4200.0, 0, 1761296400.0, None, "Bo", "102"),
    ], now=1761300000.0)
    view = LocationAggregator().aggregate(
        "city-10k",
        [
            LivePosition("p-001", 37.589932, 126.978, 1761300000.0, nickname="Ana"),
            LivePosition("p-002", 37.537770, 126.978, 1761299990.0, nickname="Bo"),
        ],
        zoom_level=18,
        top3=standings.top(3),
        now=1761300001.0,
    )
    view_pub = RealtimeViewPublisher(
        broker_host="localhost",
        topic="runtrack/data/views/test/{course_id}/{zoom}",
        logger=logger,
    )
    view_msg = RealtimeViewMessage.from_view(view)
    payload = json.loads(json.dumps(view_pub.format_message(view_msg)))
    reconstructed_view = RealtimeViewMessage.from_dict(payload)

    assert reconstructed_view.zoom_level == 18
    assert reconstructed_view.point_count == 2
    assert reconstructed_view.participant_count == 2
    assert [e.participant_id for e in reconstructed_view.top3] == ["p-001", "p-002"]
    assert reconstructed_view.top3[0].elapsed_time == pytest.approx(3600.0)
    assert reconstructed_view.top3[1].elapsed_time is None
    assert view_pub.view_topic("city-10k", 18) == "runtrack/data/views/test/city-10k/18"
    print(f"✓ RealtimeViewMessage with {reconstructed_view.point_count} points reconstructed")

    print("\n" + "=" * 60)
    print("✅ ALL SERIALIZATION TESTS PASSED")
    print("=" * 60)


def test_message_validation():
    """Invalid payloads are rejected with ValueError."""
    print("\n" + "=" * 60)
    print("TEST: Message Validation")
    print("=" * 60)

    with pytest.raises(ValueError):
        PingMessage.from_dict({"participant_id": "p-001", "latitude": 1.0, "longitude": 2.0, "timestamp": 0})
    print("✓ Missing course_id rejected")

    with pytest.raises(ValueError):
        PingMessage.from_dict({
            "participant_id": "p-001", "course_id": "c", "latitude": "north",
            "longitude": 2.0, "timestamp": 0,
        })
    print("✓ Non-numeric latitude rejected")

    with pytest.raises(ValueError):
        PingMessage.from_dict({
            "participant_id": "p-001", "course_id": "c", "latitude": 1.0,
            "longitude": 2.0, "timestamp": math.nan,
        })
    print("✓ NaN timestamp rejected")

    with pytest.raises(ValueError):
        CrossingEventMessage(
            schema_version="1.0",
            timestamp=Timestamp.now(),
            service_id="tracking_01",
            participant_id="p-001",
            course_id="city-10k",
            checkpoint_index=1,
            checkpoint_id="CP5K",
            crossing_time=100.0,
            is_terminal=False,
            elapsed_time=50.0,
        )
    print("✓ elapsed_time on a non-terminal crossing rejected")

    with pytest.raises(ValueError):
        RealtimeViewMessage(
            schema_version="1.0",
            timestamp=Timestamp.now(),
            course_id="city-10k",
            zoom_level=21,
            participants=[],
            top3=[],
        )
    print("✓ zoom_level 21 rejected")


def test_subscriber_callbacks():
    """Test that the subscriber hands valid pings to the callback."""
    print("\n" + "=" * 60)
    print("TEST: Subscriber Callbacks")
    print("=" * 60)

    logger = create_logger("test_subscriber")
    received = []

    def on_ping(msg: PingMessage):
        print(f"  📍 Callback: {msg.participant_id}@{msg.course_id} ({msg.latitude}, {msg.longitude})")
        received.append(msg)

    subscriber = PingSubscriber(
        broker_host="localhost",
        ping_topic="runtrack/data/pings/test",
        on_ping=on_ping,
        logger=logger,
    )
    print("\n✓ PingSubscriber created")

    valid = {
        "participant_id": "p-042",
        "course_id": "city-10k",
        "latitude": 37.5665,
        "longitude": 126.978,
        "timestamp": 1761296400,
        "heading": 12.5,
    }
    result = subscriber._handle_ping_message(valid)
    assert result is not None
    assert result.heading == pytest.approx(12.5)
    print("✓ Valid ping delivered")

    assert subscriber._handle_ping_message({"participant_id": "p-042"}) is None
    assert subscriber._handle_ping_message(["not", "a", "dict"]) is None
    print("✓ Invalid pings dropped")

    assert len(received) == 1
    assert received[0].participant_id == "p-042"

    stats = subscriber.get_stats()
    print("\n✓ Subscriber stats:")
    print(f"  Pings received: {stats['pings_received']}")
    print(f"  Pings invalid: {stats['pings_invalid']}")
    assert stats['pings_received'] == 1
    assert stats['pings_invalid'] == 2
    assert stats['connected'] is False

    print("\n" + "=" * 60)
    print("✅ ALL CALLBACK TESTS PASSED")
    print("=" * 60)


def test_publisher_drops_while_disconnected():
    """Publishing without a broker connection is dropped and counted."""
    print("\n" + "=" * 60)
    print("TEST: Publisher Without Broker")
    print("=" * 60)

    publisher = CrossingEventPublisher(
        broker_host="localhost",
        broker_port=1884,
        topic="runtrack/data/crossings/offline",
        logger=create_logger("test_offline"),
    )
    assert not publisher.is_connected()

    assert publisher.publish({"participant_id": "p-001"}) is False
    assert publisher.publish({"participant_id": "p-002"}, retain=True, topic="runtrack/other") is False

    stats = publisher.get_stats()
    assert stats["published"] == 0
    assert stats["failed"] == 2
    assert stats["last_published_at"] is None
    assert stats["connected"] is False
    assert stats["topic"] == "runtrack/data/crossings/offline"
    assert stats["broker"] == "localhost:1884"
    print(f"✓ Dropped and counted: {stats}")

    with pytest.raises(ValueError):
        CrossingEventPublisher(
            broker_host="localhost",
            topic="runtrack/data/crossings/offline",
            logger=create_logger("test_offline"),
            qos=3,
        )
    print("✓ Invalid QoS rejected")


def test_command_registry():
    """Registry enforces registration and required fields."""
    print("\n" + "=" * 60)
    print("TEST: Command Registry")
    print("=" * 60)

    registry = CommandRegistry()
    registry.register("echo", lambda data: data["course_id"], "Echo course", ("course_id",))
    registry.register("ping", lambda data: "pong", "Liveness")

    assert registry.execute("ping") == "pong"
    assert registry.execute("echo", {"course_id": "city-10k"}) == "city-10k"
    print("✓ Commands executed")

    with pytest.raises(CommandValidationError) as exc_info:
        registry.execute("echo", {"course_id": ""})
    assert exc_info.value.missing == ("course_id",)
    print("✓ Missing required field rejected")

    with pytest.raises(CommandNotAvailableError):
        registry.execute("launch")
    with pytest.raises(ValueError):
        registry.register("ping", lambda data: None, "Duplicate")
    print("✓ Unknown and duplicate commands rejected")

    help_text = registry.get_help()
    assert "course_id" in help_text["echo"]
    assert registry.available_commands == {"echo", "ping"}
    assert registry.count() == 2


def test_control_plane_replies():
    """Control plane turns handler results and errors into replies."""
    print("\n" + "=" * 60)
    print("TEST: Control Plane Replies")
    print("=" * 60)

    plane = MQTTControlPlane(
        broker_host="localhost",
        broker_port=1883,
        command_topic="runtrack/control/test/commands",
        status_topic="runtrack/control/test/status",
        client_id="test_control",
    )

    def lookup(data):
        raise UnknownParticipantOrCourseError(data["course_id"])

    plane.command_registry.register("courses", lambda data: {"courses": ["city-10k"]}, "List courses")
    plane.command_registry.register("lookup", lookup, "Lookup", ("course_id",))

    reply = plane.handle_command({"command": "COURSES", "request_id": "r-1"})
    assert reply == {"command": "courses", "request_id": "r-1", "status": "ok", "data": {"courses": ["city-10k"]}}
    print("✓ ok reply carries data and request_id")

    reply = plane.handle_command({"command": "lookup", "course_id": "nowhere"})
    assert reply["status"] == "error"
    assert reply["error_type"] == "UnknownParticipantOrCourseError"
    print("✓ Domain error becomes an error reply")

    reply = plane.handle_command({"command": "lookup"})
    assert reply["status"] == "error"
    assert reply["error_type"] == "CommandValidationError"

    reply = plane.handle_command({"command": "launch"})
    assert reply["status"] == "error"
    assert "not available" in reply["error"]

    reply = plane.handle_command({})
    assert reply["status"] == "error"
    print("✓ Validation, unknown and empty commands rejected")


def main():
    """Run all tests."""
    print("\n🏃 runtrack_mqtt - Pub/Sub Integration Tests")
    print("=" * 60)
    print("Testing without real MQTT broker (simulated)")
    print("=" * 60)

    try:
        test_message_serialization()
        test_message_validation()
        test_subscriber_callbacks()
        test_publisher_drops_while_disconnected()
        test_command_registry()
        test_control_plane_replies()

        print("\n" + "=" * 60)
        print("✅ ALL TESTS PASSED!")
        print("=" * 60)
        print("\n🎯 Next Steps:")
        print("   1. Start MQTT broker: mosquitto -v")
        print("   2. python run_tracking_service.py --config config/tracking_config.yaml")
        print("   3. runtrack-cli send-pings data/sample_pings.jsonl")

    except AssertionError as e:
        print(f"\n❌ TEST FAILED: {e}")
        raise
    except Exception as e:
        print(f"\n❌ ERROR: {e}")
        raise


if __name__ == "__main__":
    main()
