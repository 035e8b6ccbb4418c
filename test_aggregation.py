"""
Test Location Aggregation
=========================

Usage:
    source .venv/bin/activate && python test_aggregation.py
"""

import pytest

from runtrack_course.analytics.aggregator import LivePosition, LocationAggregator
from runtrack_course.analytics.ranking import RankingEngine, RankingInput
from runtrack_course.analytics.session import ParticipationStatus


def crowd(count: int = 100):
    """count participants within ~100 m of one point."""
    return [
        LivePosition(
            participant_id=f"p-{i:03d}",
            latitude=37.5665 + (i % 10) * 0.0001,
            longitude=126.9780 + (i // 10) * 0.0001,
            timestamp=1000.0 + i,
            nickname=f"Runner {i}",
        )
        for i in range(count)
    ]


def test_zoom_clustering():
    """Low zoom clusters a crowd; high zoom shows everyone."""
    print("\n" + "=" * 60)
    print("TEST: Zoom-Aware Clustering")
    print("=" * 60)

    aggregator = LocationAggregator(cell_size_px=64, cluster_max_zoom=15)
    positions = crowd(100)

    zoomed_out = aggregator.aggregate("c", positions, zoom_level=1, now=5.0)
    zoomed_in = aggregator.aggregate("c", positions, zoom_level=20, now=5.0)

    print(f"✓ zoom 1: {len(zoomed_out.participants)} points, zoom 20: {len(zoomed_in.participants)} points")
    assert len(zoomed_out.participants) < 100
    assert zoomed_out.clustered is True
    assert sum(p.cluster_size for p in zoomed_out.participants) == 100

    assert len(zoomed_in.participants) == 100
    assert zoomed_in.clustered is False
    assert all(p.cluster_size == 1 for p in zoomed_in.participants)
    assert [p.position.participant_id for p in zoomed_in.participants] == sorted(p.participant_id for p in positions)


def test_cluster_representative():
    """A cluster is represented by its most recent fix."""
    print("\n" + "=" * 60)
    print("TEST: Cluster Representative")
    print("=" * 60)

    view = LocationAggregator().aggregate("c", crowd(100), zoom_level=1)
    assert len(view.participants) == 1
    point = view.participants[0]
    assert point.is_cluster
    assert point.position.participant_id == "p-099"
    print(f"✓ Single cluster of {point.cluster_size} led by {point.position.participant_id}")


def test_top3_included():
    """Standings head is carried in the view."""
    print("\n" + "=" * 60)
    print("TEST: Top 3 In View")
    print("=" * 60)

    standings = RankingEngine.compute("c", [
        RankingInput(f"p-{i:03d}", ParticipationStatus.IN_PROGRESS, float(i * 10)) for i in range(100)
    ])
    view = LocationAggregator().aggregate("c", crowd(100), zoom_level=12, top3=standings.top(3))

    assert [e.participant_id for e in view.top3] == ["p-099", "p-098", "p-097"]
    data = view.to_dict()
    assert data["zoom_level"] == 12
    assert [e["rank"] for e in data["top3"]] == [1, 2, 3]
    print("✓ Top 3 serialized with the view")


def test_empty_and_invalid():
    view = LocationAggregator().aggregate("c", [], zoom_level=5)
    assert view.participants == ()
    assert view.top3 == ()

    with pytest.raises(ValueError):
        LocationAggregator(cell_size_px=0)


def main():
    """Run all tests."""
    print("\n🗺️  runtrack_course - Aggregation Tests")

    test_zoom_clustering()
    test_cluster_representative()
    test_top3_included()
    test_empty_and_invalid()

    print("\n" + "=" * 60)
    print("✅ ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
