"""
Test Checkpoint Crossing Detection
==================================

Usage:
    source .venv/bin/activate && python test_crossing_detection.py
"""

import math

import pytest

from runtrack_course.analytics.crossing import CheckpointCrossingDetector, interpolate_crossing_time
from runtrack_course.geometry import Checkpoint, CheckpointType, Course
from runtrack_course.geometry.geodesy import EARTH_RADIUS_M

METERS_PER_DEG = math.radians(1.0) * EARTH_RADIUS_M


def make_course() -> Course:
    return Course.build("eq-10k", [
        Checkpoint(0, CheckpointType.START, "START", 0.0, 0.0, 0.0),
        Checkpoint(1, CheckpointType.INTERMEDIATE, "CP5K", 0.0, 5000 / METERS_PER_DEG, 5000.0),
        Checkpoint(2, CheckpointType.FINISH, "FINISH", 0.0, 10000 / METERS_PER_DEG, 10000.0),
    ])


def test_interpolation():
    """Crossing time is linear between the bracketing fixes."""
    print("\n" + "=" * 60)
    print("TEST: Crossing Time Interpolation")
    print("=" * 60)

    t = interpolate_crossing_time(5000.0, 4990.0, 100.0, 5005.0, 110.0)
    print(f"✓ 4990@100 -> 5005@110 crosses 5000 at t={t:.2f}")
    assert t == pytest.approx(106.6667, abs=1e-3)

    assert interpolate_crossing_time(100.0, 100.0, 5.0, 100.0, 9.0) == 9.0
    assert interpolate_crossing_time(50.0, 100.0, 5.0, 200.0, 9.0) == 5.0
    assert interpolate_crossing_time(500.0, 100.0, 5.0, 200.0, 9.0) == 9.0


def test_detect_intermediate_crossing():
    """Moving past a checkpoint plus hysteresis yields one crossing."""
    print("\n" + "=" * 60)
    print("TEST: Intermediate Crossing")
    print("=" * 60)

    course = make_course()
    detector = CheckpointCrossingDetector(hysteresis_m=3.0)

    events, last = detector.detect(course, "p1", 0, (4990.0, 100.0), (5005.0, 110.0), 0.0)
    assert last == 1
    assert len(events) == 1
    assert events[0].checkpoint_id == "CP5K"
    assert events[0].is_terminal is False
    assert events[0].timestamp == pytest.approx(106.67, abs=0.01)
    print(f"✓ {events[0].checkpoint_id} crossed at {events[0].timestamp:.2f}")

    # Inside the hysteresis band: no crossing yet
    events, last = detector.detect(course, "p1", 0, (4990.0, 100.0), (5002.0, 110.0), 0.0)
    assert events == [] and last == 0
    print("✓ 5002 m is inside the hysteresis band")


def test_detect_first_ping_and_skips():
    """First ping crosses the start; a long jump crosses every checkpoint in order."""
    print("\n" + "=" * 60)
    print("TEST: Start + Multiple Crossings")
    print("=" * 60)

    course = make_course()
    detector = CheckpointCrossingDetector(hysteresis_m=3.0)

    events, last = detector.detect(course, "p1", -1, None, (20.0, 30.0), 10.0)
    assert [e.checkpoint_index for e in events] == [0]
    assert events[0].timestamp == 10.0
    assert last == 0

    events, last = detector.detect(course, "p1", 0, (0.0, 0.0), (10000.0, 100.0), 0.0)
    assert [e.checkpoint_index for e in events] == [1, 2]
    assert events[0].timestamp == pytest.approx(50.0)
    assert events[1].timestamp == pytest.approx(100.0)
    assert events[1].is_terminal
    assert last == 2
    print("✓ Finish reachable even though the hysteresis would pass route end")


def test_index_never_decreases():
    """Moving backwards or staying put produces no events."""
    print("\n" + "=" * 60)
    print("TEST: Monotonic Index")
    print("=" * 60)

    course = make_course()
    detector = CheckpointCrossingDetector()

    events, last = detector.detect(course, "p1", 1, (5100.0, 100.0), (5100.0, 110.0), 0.0)
    assert events == [] and last == 1

    events, last = detector.detect(course, "p1", 2, (10000.0, 100.0), (10000.0, 200.0), 0.0)
    assert events == [] and last == 2

    with pytest.raises(ValueError):
        CheckpointCrossingDetector(hysteresis_m=-1.0)
    print("✓ No events without forward progress")


def main():
    """Run all tests."""
    print("\n🚩 runtrack_course - Crossing Detection Tests")

    test_interpolation()
    test_detect_intermediate_crossing()
    test_detect_first_ping_and_skips()
    test_index_never_decreases()

    print("\n" + "=" * 60)
    print("✅ ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
