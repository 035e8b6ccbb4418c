"""
Test Tracking Service (Without Real Broker)
===========================================

End-to-end tests of ping ingestion, lifecycle commands, standings and
realtime views through TrackingService, with in-memory stores and no
MQTT connection.

Usage:
    source .venv/bin/activate && python test_tracking_service.py
"""

import math
import random
import threading
from pathlib import Path

import pytest

from runtrack_control import MQTTControlPlane
from runtrack_course.analytics.session import ParticipationStatus, TrackingStatus
from runtrack_course.geometry import Checkpoint, CheckpointType, Course
from runtrack_course.geometry.geodesy import EARTH_RADIUS_M
from runtrack_mqtt.schemas import PingMessage
from runtrack_tracking import (
    InMemoryCourseStore,
    Participant,
    TrackingConfig,
    TrackingService,
    YamlCourseStore,
)
from runtrack_tracking.config import AggregationConfig, MappingConfig, MQTTConfig, SessionConfig
from runtrack_tracking.errors import (
    CourseDataUnavailableError,
    InvalidTransitionError,
    InvalidZoomLevelError,
    RejectReason,
    SessionClosedError,
    UnknownParticipantOrCourseError,
)

HERE = Path(__file__).parent
METERS_PER_DEG = math.radians(1.0) * EARTH_RADIUS_M
COURSE_ID = "eq-10k"


def lng_at(distance_m: float) -> float:
    return distance_m / METERS_PER_DEG


class RecordingPublisher:
    """Stands in for the MQTT publishers: records instead of sending."""

    def __init__(self):
        self.crossings = []
        self.views = []

    def connect(self, timeout: float = 10.0) -> bool:
        return True

    def disconnect(self) -> None:
        pass

    def publish_crossing(self, msg) -> bool:
        self.crossings.append(msg)
        return True

    def publish_view(self, msg) -> bool:
        self.views.append(msg)
        return True

    def get_stats(self):
        return {"message_count": len(self.crossings) + len(self.views)}


def make_store() -> InMemoryCourseStore:
    course = Course.build(COURSE_ID, [
        Checkpoint(0, CheckpointType.START, "START", 0.0, lng_at(0), 0.0),
        Checkpoint(1, CheckpointType.INTERMEDIATE, "CP5K", 0.0, lng_at(5000), 5000.0),
        Checkpoint(2, CheckpointType.FINISH, "FINISH", 0.0, lng_at(10000), 10000.0),
    ], name="Equator 10K")
    participants = [
        Participant("p1", COURSE_ID, nickname="Ana", bib_number="101"),
        Participant("p2", COURSE_ID, nickname="Bo", bib_number="102"),
        Participant("p3", COURSE_ID, nickname="Chen", bib_number="103"),
    ]
    return InMemoryCourseStore(courses=[course], participants=participants)


def make_service(**kwargs) -> TrackingService:
    config = TrackingConfig(
        service_id="test",
        aggregation=AggregationConfig(publish_zoom_levels=(12, 16)),
    )
    return TrackingService(config=config, course_store=make_store(), clock=lambda: 5000.0, **kwargs)


def ping(service: TrackingService, participant_id: str, distance_m: float, timestamp: float, **kwargs):
    return service.ingest_ping(participant_id, COURSE_ID, 0.0, lng_at(distance_m), timestamp, **kwargs)


def test_crossing_with_interpolated_time():
    """4990 m at t=100 then 5005 m at t=110 crosses CP5K at t≈106.67."""
    print("\n" + "=" * 60)
    print("TEST: Crossing With Interpolated Time")
    print("=" * 60)

    publisher = RecordingPublisher()
    service = make_service(crossing_publisher=publisher)

    first = ping(service, "p1", 4990.0, 100.0)
    assert first.accepted
    assert [e.checkpoint_id for e in first.crossings] == ["START"]

    second = ping(service, "p1", 5005.0, 110.0)
    assert second.accepted
    assert len(second.crossings) == 1
    event = second.crossings[0]
    print(f"✓ {event.checkpoint_id} crossed at t={event.timestamp:.2f}")
    assert event.checkpoint_index == 1
    assert event.timestamp == pytest.approx(106.67, abs=0.01)

    progress = service.get_progress("p1", COURSE_ID)
    assert progress.status == TrackingStatus.IN_PROGRESS
    assert progress.last_crossed_index == 1
    assert progress.distance_covered == pytest.approx(5005.0, abs=0.5)

    splits = service.get_split_times("p1", COURSE_ID)
    assert [s.checkpoint_id for s in splits] == ["START", "CP5K"]
    assert splits[1].elapsed == pytest.approx(6.67, abs=0.01)
    assert splits[1].name == "Checkpoint 1"

    # Both crossings queued for publishing
    assert service.publish_queue.qsize() == 2
    msg_type, msg = service.publish_queue.get_nowait()
    assert msg_type == "crossing" and msg.checkpoint_id == "START"

    standings = service.get_standings(COURSE_ID)
    assert standings.rank_of("p1") == 1
    assert standings.entries[0].nickname == "Ana"
    assert standings.entries[0].bib_number == "101"


def test_outlier_and_duplicate_pings():
    """Implausible speed leaves distance unchanged; duplicates are no-ops."""
    print("\n" + "=" * 60)
    print("TEST: Outlier + Duplicate Pings")
    print("=" * 60)

    service = make_service()
    assert ping(service, "p1", 1000.0, 1000.0).accepted
    before = service.get_progress("p1", COURSE_ID)

    # 200 m in 10 s = 72 km/h
    outlier = ping(service, "p1", 1200.0, 1010.0)
    assert not outlier.accepted
    assert outlier.reason == RejectReason.IMPLAUSIBLE_SPEED
    assert service.get_progress("p1", COURSE_ID) == before
    print("✓ 72 km/h ping rejected, state unchanged")

    duplicate = ping(service, "p1", 1000.0, 1000.0)
    assert duplicate.reason == RejectReason.STALE
    older = ping(service, "p1", 990.0, 900.0)
    assert older.reason == RejectReason.STALE
    assert service.get_progress("p1", COURSE_ID).version == before.version
    print("✓ Same and older timestamps dropped as STALE")

    # 150 m north in 15 s: plausible speed, too far from the route
    off_course = service.ingest_ping("p1", COURSE_ID, 150.0 / METERS_PER_DEG, lng_at(1010.0), 1015.0)
    assert off_course.reason == RejectReason.OFF_COURSE

    assert ping(service, "p1", 1050.0, 1020.0).accepted
    assert service.get_progress("p1", COURSE_ID).distance_covered == pytest.approx(1050.0, abs=0.5)


def test_distance_never_decreases():
    """Backward jitter updates the position but not distance covered."""
    service = make_service()
    assert ping(service, "p1", 2000.0, 100.0).accepted
    assert ping(service, "p1", 1990.0, 110.0).accepted

    progress = service.get_progress("p1", COURSE_ID)
    assert progress.distance_covered == pytest.approx(2000.0, abs=0.5)
    assert progress.last_ping.longitude == pytest.approx(lng_at(1990.0))


def test_completed_session_is_closed():
    """Pings after the finish are rejected and change nothing."""
    print("\n" + "=" * 60)
    print("TEST: Completed Session")
    print("=" * 60)

    service = make_service()
    ping(service, "p1", 4990.0, 100.0)
    ping(service, "p1", 5005.0, 110.0)
    finish = ping(service, "p1", 10010.0, 3000.0)

    assert finish.accepted
    assert finish.finished
    progress = service.get_progress("p1", COURSE_ID)
    assert progress.status == TrackingStatus.COMPLETED
    assert progress.participation == ParticipationStatus.FINISHED
    assert progress.elapsed_time == pytest.approx(2900.0)
    print(f"✓ Finished in {progress.elapsed_time:.0f}s")

    late = ping(service, "p1", 10010.0, 3100.0)
    assert not late.accepted
    assert late.reason == RejectReason.SESSION_CLOSED
    assert service.get_progress("p1", COURSE_ID) == progress
    assert service.get_standings(COURSE_ID).rank_of("p1") == 1
    print("✓ Late ping rejected as SESSION_CLOSED")

    with pytest.raises(SessionClosedError):
        service.stop_session("p1", COURSE_ID)
    with pytest.raises(SessionClosedError):
        service.start_session("p1", COURSE_ID)


def test_malformed_and_unknown():
    """Malformed pings are rejected; unknown ids raise (or drop over MQTT)."""
    service = make_service()

    outcome = service.ingest_ping("p1", COURSE_ID, 95.0, 0.0, 100.0)
    assert outcome.reason == RejectReason.MALFORMED
    outcome = service.ingest_ping("p1", COURSE_ID, 0.0, 0.0, math.nan)
    assert outcome.reason == RejectReason.MALFORMED

    with pytest.raises(UnknownParticipantOrCourseError):
        ping(service, "ghost", 100.0, 100.0)
    with pytest.raises(UnknownParticipantOrCourseError):
        service.ingest_ping("p1", "no-such-course", 0.0, 0.0, 100.0)

    msg = PingMessage(participant_id="ghost", course_id=COURSE_ID, latitude=0.0, longitude=0.0, timestamp=1.0)
    assert service.ingest_message(msg) is None

    msg = PingMessage(participant_id="p2", course_id=COURSE_ID, latitude=0.0, longitude=lng_at(10), timestamp=1.0)
    assert service.ingest_message(msg).accepted

    with pytest.raises(UnknownParticipantOrCourseError):
        service.get_progress("p3", COURSE_ID)


def test_pause_resume():
    """Pings while paused are rejected; resume accepts them again."""
    print("\n" + "=" * 60)
    print("TEST: Pause / Resume")
    print("=" * 60)

    service = make_service()
    service.start_session("p2", COURSE_ID, timestamp=0.0)

    with pytest.raises(InvalidTransitionError):
        service.pause_session("p2", COURSE_ID)

    assert ping(service, "p2", 100.0, 50.0).accepted
    assert service.pause_session("p2", COURSE_ID).status == TrackingStatus.PAUSED

    paused = ping(service, "p2", 150.0, 60.0)
    assert paused.reason == RejectReason.SESSION_PAUSED

    assert service.resume_session("p2", COURSE_ID).status == TrackingStatus.IN_PROGRESS
    assert ping(service, "p2", 150.0, 70.0).accepted

    progress = service.get_progress("p2", COURSE_ID)
    assert progress.start_timestamp == 0.0
    assert progress.crossing_times == (0.0,)
    print("✓ Pause/resume honoured")


def test_dns_dnf_and_standings():
    """DNS/DNF participants are unranked; finishers lead."""
    print("\n" + "=" * 60)
    print("TEST: DNS / DNF")
    print("=" * 60)

    service = make_service()
    ping(service, "p1", 4990.0, 100.0)
    ping(service, "p2", 3000.0, 100.0)

    service.mark_dns("p3", COURSE_ID)
    service.mark_dnf("p2", COURSE_ID)

    with pytest.raises(SessionClosedError):
        service.mark_dns("p3", COURSE_ID)

    standings = service.get_standings(COURSE_ID)
    assert [e.participant_id for e in standings.entries] == ["p1"]
    unranked = {e.participant_id: e.status for e in standings.unranked}
    assert unranked == {"p2": ParticipationStatus.DNF, "p3": ParticipationStatus.DNS}

    rejected = ping(service, "p2", 3010.0, 200.0)
    assert rejected.reason == RejectReason.SESSION_CLOSED
    print("✓ DNS/DNF unranked and closed")


def test_silence_sweep():
    """Silent live sessions fail, silent paused ones stop."""
    print("\n" + "=" * 60)
    print("TEST: Silence Sweep")
    print("=" * 60)

    config = TrackingConfig(service_id="test", session=SessionConfig(silence_timeout_s=600.0))
    service = TrackingService(config=config, course_store=make_store())

    ping(service, "p1", 100.0, 1000.0)
    ping(service, "p2", 100.0, 1000.0)
    service.pause_session("p2", COURSE_ID)
    service.start_session("p3", COURSE_ID, timestamp=1000.0)

    assert service.sweep(now=1500.0) == []

    changed = service.sweep(now=1700.0)
    assert {r.participant_id: r.status for r in changed} == {
        "p1": TrackingStatus.FAILED,
        "p2": TrackingStatus.STOPPED,
    }
    assert service.get_progress("p3", COURSE_ID).status == TrackingStatus.STARTED

    standings = service.get_standings(COURSE_ID)
    assert {e.participant_id for e in standings.unranked} == {"p1", "p2"}
    print("✓ Sweep applied silence timeout")


def test_realtime_view():
    """Views validate zoom and carry top 3."""
    print("\n" + "=" * 60)
    print("TEST: Realtime View")
    print("=" * 60)

    service = make_service()
    ping(service, "p1", 300.0, 100.0)
    ping(service, "p2", 200.0, 100.0)
    ping(service, "p3", 100.0, 100.0)

    for bad in (0, 21, "12", 12.5, True, None):
        with pytest.raises(InvalidZoomLevelError):
            service.get_realtime_view(COURSE_ID, bad)
    print("✓ Invalid zoom levels rejected")

    view = service.get_realtime_view(COURSE_ID, 20)
    assert len(view.participants) == 3
    assert view.generated_at == 5000.0
    assert [e.participant_id for e in view.top3] == ["p1", "p2", "p3"]
    assert {p.position.nickname for p in view.participants} == {"Ana", "Bo", "Chen"}

    view = service.get_realtime_view(COURSE_ID, 1)
    assert len(view.participants) == 1
    assert view.participants[0].cluster_size == 3

    with pytest.raises(UnknownParticipantOrCourseError):
        service.get_realtime_view("no-such-course", 12)


def test_publish_views():
    """One view queued per configured zoom level."""
    publisher = RecordingPublisher()
    service = make_service(view_publisher=publisher)
    ping(service, "p1", 300.0, 100.0)

    assert service.publish_views(COURSE_ID) == 2
    zooms = []
    while not service.publish_queue.empty():
        msg_type, msg = service.publish_queue.get_nowait()
        assert msg_type == "view"
        zooms.append(msg.zoom_level)
    assert zooms == [12, 16]

    assert make_service().publish_views(COURSE_ID) == 0


def test_reset_and_repopulate():
    """Reset drops course state; repopulate rebuilds hot state from progress."""
    print("\n" + "=" * 60)
    print("TEST: Reset + Repopulate")
    print("=" * 60)

    service = make_service()
    ping(service, "p1", 300.0, 100.0)
    ping(service, "p2", 200.0, 100.0)
    service.start_session("p3", COURSE_ID)

    service.hot_state.clear_course(COURSE_ID)
    assert service.hot_state.get_positions(COURSE_ID) == []
    assert service.repopulate_hot_state(COURSE_ID) == 2
    assert len(service.hot_state.get_positions(COURSE_ID)) == 2
    print("✓ Hot state rebuilt from progress")

    assert service.reset_course(COURSE_ID) == 3
    assert service.hot_state.get_positions(COURSE_ID) == []
    assert len(service.get_standings(COURSE_ID)) == 0
    with pytest.raises(UnknownParticipantOrCourseError):
        service.get_progress("p1", COURSE_ID)

    # Fresh session after reset
    assert ping(service, "p1", 50.0, 10.0).accepted
    print("✓ Course reset")


def test_control_commands():
    """Commands over the control plane map to service operations."""
    print("\n" + "=" * 60)
    print("TEST: Control Commands")
    print("=" * 60)

    plane = MQTTControlPlane(
        broker_host="localhost",
        broker_port=1883,
        command_topic="runtrack/control/test/commands",
        status_topic="runtrack/control/test/status",
        client_id="test_control",
    )
    service = make_service(control_plane=plane)

    reply = plane.handle_command({"command": "start", "participant_id": "p1", "course_id": COURSE_ID, "timestamp": 0})
    assert reply["status"] == "ok"
    assert reply["data"]["status"] == "started"

    ping(service, "p1", 500.0, 100.0)

    reply = plane.handle_command({"command": "standings", "course_id": COURSE_ID, "limit": 1})
    assert reply["status"] == "ok"
    assert reply["data"]["total"] == 1
    assert reply["data"]["entries"][0]["participant_id"] == "p1"

    reply = plane.handle_command({"command": "view", "course_id": COURSE_ID, "zoom": 25})
    assert reply["status"] == "error"
    assert reply["error_type"] == "InvalidZoomLevelError"

    reply = plane.handle_command({"command": "progress", "participant_id": "ghost", "course_id": COURSE_ID})
    assert reply["error_type"] == "UnknownParticipantOrCourseError"

    reply = plane.handle_command({"command": "splits", "participant_id": "p1", "course_id": COURSE_ID})
    assert [s["checkpoint_id"] for s in reply["data"]["splits"]] == ["START"]

    reply = plane.handle_command({"command": "list_courses"})
    assert reply["data"] == {"courses": [COURSE_ID]}

    reply = plane.handle_command({"command": "status"})
    assert reply["data"]["tracked_sessions"] == 1
    assert reply["data"]["running"] is False

    reply = plane.handle_command({"command": "help"})
    assert "requires: course_id" in reply["data"]["commands"]["standings"]

    reply = plane.handle_command({"command": "pause"})
    assert reply["error_type"] == "CommandValidationError"
    print("✓ Control commands replied")


def test_first_ping_on_shared_ground():
    """A first ping where the home straight runs beside the start stays at the start."""
    print("\n" + "=" * 60)
    print("TEST: First Ping On Out-and-Back Course")
    print("=" * 60)

    five_north = 5.0 / METERS_PER_DEG
    course = Course.build("out-back", [
        Checkpoint(0, CheckpointType.START, "START", 0.0, lng_at(0), 0.0),
        Checkpoint(1, CheckpointType.INTERMEDIATE, "TURN", 0.0, lng_at(1000), 1000.0),
        Checkpoint(2, CheckpointType.INTERMEDIATE, "TURN-BACK", five_north, lng_at(1000), 1005.0),
        Checkpoint(3, CheckpointType.FINISH, "FINISH", five_north, lng_at(0), 2005.0),
    ])
    store = InMemoryCourseStore(courses=[course], participants=[Participant("p1", "out-back")])
    service = TrackingService(config=TrackingConfig(service_id="test"), course_store=store)

    first = service.ingest_ping("p1", "out-back", 3.0 / METERS_PER_DEG, 0.0, 0.0)
    assert first.accepted
    assert [e.checkpoint_id for e in first.crossings] == ["START"]
    assert first.progress.status == TrackingStatus.IN_PROGRESS
    assert first.progress.distance_covered == pytest.approx(0.0, abs=0.5)
    print("✓ Not finished by a ping at the start line")

    assert service.ingest_ping("p1", "out-back", 0.0, lng_at(100), 30.0).accepted
    second = service.ingest_ping("p1", "out-back", 4.0 / METERS_PER_DEG, lng_at(130), 40.0)
    assert second.accepted
    assert second.crossings == ()
    assert second.progress.distance_covered == pytest.approx(130.0, abs=0.5)
    print("✓ Ping beside the home straight stays on the outbound leg")


def test_live_elapsed_time_in_view():
    """Top 3 carries running time for participants still on course."""
    print("\n" + "=" * 60)
    print("TEST: Live Elapsed Time")
    print("=" * 60)

    service = make_service()
    service.start_session("p1", COURSE_ID, timestamp=0.0)
    assert ping(service, "p1", 300.0, 100.0).accepted

    top = service.get_realtime_view(COURSE_ID, 12).to_dict()["top3"]
    assert top[0]["participant_id"] == "p1"
    assert top[0]["elapsed_time"] == pytest.approx(100.0)
    assert service.get_standings(COURSE_ID).entries[0].elapsed_time == pytest.approx(100.0)

    # No crossing: standings stay cached, the view still moves on
    assert ping(service, "p1", 800.0, 160.0).accepted
    top = service.get_realtime_view(COURSE_ID, 12).to_dict()["top3"]
    assert top[0]["elapsed_time"] == pytest.approx(160.0)
    print(f"✓ Leader running time {top[0]['elapsed_time']:.0f}s")


def test_start_after_first_ping_is_clamped():
    """A start time later than the first ping never yields negative splits."""
    service = make_service()
    service.start_session("p1", COURSE_ID, timestamp=200.0)
    assert ping(service, "p1", 4990.0, 100.0).accepted
    assert ping(service, "p1", 5005.0, 110.0).accepted

    progress = service.get_progress("p1", COURSE_ID)
    assert progress.start_timestamp == 100.0
    splits = service.get_split_times("p1", COURSE_ID)
    assert [s.checkpoint_id for s in splits] == ["START", "CP5K"]
    assert all(s.elapsed >= 0 and s.segment_duration >= 0 for s in splits)
    assert splits[1].elapsed == pytest.approx(6.67, abs=0.01)


def test_concurrent_pings_keep_newest():
    """Shuffled pings from many threads: newest timestamp wins, nothing lost."""
    print("\n" + "=" * 60)
    print("TEST: Concurrent Ping Delivery")
    print("=" * 60)

    service = make_service()
    timestamps = list(range(1, 200))
    random.Random(7).shuffle(timestamps)
    outcomes = []

    def deliver(chunk):
        for ts in chunk:
            # 2 m/s along the course
            outcomes.append(ping(service, "p1", 1000.0 + 2.0 * ts, float(ts)))

    threads = [threading.Thread(target=deliver, args=(timestamps[i::8],)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30.0)

    assert len(outcomes) == 199
    accepted = [o for o in outcomes if o.accepted]
    assert all(o.reason == RejectReason.STALE for o in outcomes if not o.accepted)

    progress = service.get_progress("p1", COURSE_ID)
    assert progress.last_ping.timestamp == 199.0
    assert progress.version == len(accepted)
    assert progress.distance_covered == pytest.approx(1398.0, abs=0.5)

    positions = service.hot_state.get_positions(COURSE_ID)
    assert [p.timestamp for p in positions] == [199.0]
    print(f"✓ {len(accepted)} accepted, {199 - len(accepted)} stale, newest kept")


def test_reset_waits_for_in_flight_update():
    """Reset blocks on a participant mid-update and prunes its lock."""
    service = make_service()
    assert ping(service, "p1", 300.0, 100.0).accepted
    tracker = service.tracker

    holding = threading.Event()
    release = threading.Event()

    def in_flight():
        with tracker._locked((COURSE_ID, "p1")):
            holding.set()
            release.wait(timeout=5.0)

    worker = threading.Thread(target=in_flight)
    worker.start()
    assert holding.wait(timeout=5.0)

    removed = []
    resetter = threading.Thread(target=lambda: removed.append(service.reset_course(COURSE_ID)))
    resetter.start()
    resetter.join(timeout=0.2)
    assert resetter.is_alive()

    release.set()
    worker.join(timeout=5.0)
    resetter.join(timeout=5.0)
    assert removed == [1]
    assert not any(key[0] == COURSE_ID for key in tracker._locks)

    # Next ping starts a fresh record under a fresh lock
    assert ping(service, "p1", 50.0, 10.0).progress.version == 1


def test_yaml_course_store(tmp_path):
    """Course files load; a broken file makes only that course unavailable."""
    print("\n" + "=" * 60)
    print("TEST: YAML Course Store")
    print("=" * 60)

    (tmp_path / "good.yaml").write_text(
        "course_id: good\n"
        "discipline: bike\n"
        "open_registration: true\n"
        "checkpoints:\n"
        "  - {id: START, type: start, lat: 0.0, lng: 0.0, distance: 0}\n"
        "  - {id: FINISH, type: finish, lat: 0.0, lng: 0.01, distance: 1111.95}\n"
        "participants:\n"
        "  - {participant_id: r1, nickname: Rider, bib_number: 7}\n"
    )
    (tmp_path / "broken.yaml").write_text("course_id: broken\ncheckpoints: []\n")
    (tmp_path / "garbage.yml").write_text("- just\n- a list\n")

    store = YamlCourseStore(tmp_path)
    assert store.list_course_ids() == ["good"]

    course = store.get_course("good")
    assert course.discipline.value == "bike"
    assert course.total_distance == pytest.approx(1111.95, abs=0.01)
    assert store.find_first_checkpoint_beyond("good", 0.0).checkpoint_id == "FINISH"
    assert store.find_first_checkpoint_beyond("good", 2000.0) is None
    assert [p.participant_id for p in store.list_participants("good")] == ["r1"]
    assert store.get_participant("good", "r1").bib_number == "7"
    assert store.get_participant("good", "walk-in").nickname == "walk-in"

    with pytest.raises(CourseDataUnavailableError):
        store.get_course("broken")
    with pytest.raises(CourseDataUnavailableError):
        store.get_course("garbage")
    with pytest.raises(UnknownParticipantOrCourseError):
        store.get_course("missing")
    print("✓ Broken course files isolated")


def test_config_loading():
    """Shipped YAML config loads and validates."""
    config = TrackingConfig.from_yaml(HERE / "config" / "tracking_config.yaml")
    assert config.service_id == "tracking_01"
    assert config.mapping.lateral_tolerance_m == 100.0
    assert config.aggregation.publish_zoom_levels == (12, 16)
    assert config.mqtt_config.topic(config.mqtt_config.view_topic, "svc") == "runtrack/data/views/svc/{course_id}/{zoom}"

    with pytest.raises(ValueError):
        MappingConfig(max_speed_kmh={"skate": 30.0})
    with pytest.raises(ValueError):
        MQTTConfig(qos=3)
    with pytest.raises(ValueError):
        AggregationConfig(publish_zoom_levels=(0,))
    with pytest.raises(ValueError):
        TrackingConfig(service_id="")


def test_replay_sample_pings():
    """The shipped sample replays to one finisher and two rejections."""
    from run_replay import replay
    from runtrack_cli.cli import load_pings

    config = TrackingConfig.from_yaml(HERE / "config" / "tracking_config.yaml")
    store = YamlCourseStore(HERE / "config" / "courses")
    service = TrackingService(config=config, course_store=store)

    counts = replay(service, load_pings(str(HERE / "data" / "sample_pings.jsonl")))
    assert counts["accepted"] == 9
    assert counts["implausible_speed"] == 1
    assert counts["session_closed"] == 1

    standings = service.get_standings("city-10k")
    assert standings.entries[0].participant_id == "p-001"
    assert standings.entries[0].status == ParticipationStatus.FINISHED
    assert standings.entries[0].nickname == "Ana"


def main():
    """Run all tests (tmp_path tests need pytest)."""
    print("\n🏃 runtrack_tracking - Service Tests")

    test_crossing_with_interpolated_time()
    test_outlier_and_duplicate_pings()
    test_distance_never_decreases()
    test_completed_session_is_closed()
    test_malformed_and_unknown()
    test_pause_resume()
    test_dns_dnf_and_standings()
    test_silence_sweep()
    test_realtime_view()
    test_publish_views()
    test_reset_and_repopulate()
    test_control_commands()
    test_first_ping_on_shared_ground()
    test_live_elapsed_time_in_view()
    test_start_after_first_ping_is_clamped()
    test_concurrent_pings_keep_newest()
    test_reset_waits_for_in_flight_update()
    test_config_loading()
    test_replay_sample_pings()

    print("\n" + "=" * 60)
    print("✅ ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
