#!/usr/bin/env python3
"""
Ping Replay
===========

Replays a JSON-lines ping file through TrackingService in-process (no
broker needed) and prints crossings, rejections and final standings.

Usage:
    python run_replay.py --config config/tracking_config.yaml data/pings.jsonl
    python run_replay.py --config config/tracking_config.yaml data/pings.jsonl --zoom 12 --json

Each line is a PingMessage dict:
    {"participant_id": "p-001", "course_id": "city-10k",
     "latitude": 37.5665, "longitude": 126.978, "timestamp": 1761296400}
"""

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path

from runtrack_cli.cli import load_pings
from runtrack_tracking import TrackingService, YamlCourseStore
from runtrack_tracking.config import TrackingConfig
from runtrack_tracking.errors import TrackingError

logger = logging.getLogger("run_replay")


def replay(service: TrackingService, pings) -> Counter:
    """Feed pings in file order. Returns outcome counts by reason."""
    counts = Counter()
    for msg in pings:
        outcome = service.ingest_message(msg)
        if outcome is None:
            counts["unknown"] += 1
            continue
        if outcome.accepted:
            counts["accepted"] += 1
            for event in outcome.crossings:
                print(
                    f"🚩 {event.participant_id} crossed {event.checkpoint_id} "
                    f"at {event.timestamp:.1f}" + (" (finish)" if event.is_terminal else "")
                )
        else:
            counts[outcome.reason.value] += 1
    return counts


def main():
    parser = argparse.ArgumentParser(description="Replay a ping file through the tracking service")
    parser.add_argument('pings', type=Path, help='JSON-lines ping file')
    parser.add_argument('--config', type=Path, required=True, help='Tracking configuration YAML')
    parser.add_argument('--zoom', type=int, default=None, help='Also print the realtime view at this zoom')
    parser.add_argument('--json', action='store_true', help='Print standings as JSON')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    try:
        config = TrackingConfig.from_yaml(args.config)
        config.validate_paths()
        store = YamlCourseStore(config.courses_dir, densify_spacing_m=config.mapping.densify_spacing_m)
        pings = load_pings(str(args.pings))
    except (OSError, ValueError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)

    service = TrackingService(config=config, course_store=store)
    counts = replay(service, pings)

    print(f"\n📊 {len(pings)} pings: " + ", ".join(f"{k}={v}" for k, v in sorted(counts.items())))

    for course_id in sorted({msg.course_id for msg in pings}):
        try:
            standings = service.get_standings(course_id)
        except TrackingError as e:
            print(f"❌ {course_id}: {e}", file=sys.stderr)
            continue

        if args.json:
            print(json.dumps(standings.to_dict(), indent=2))
        else:
            print(f"\n🏆 {course_id}")
            for entry in standings.entries:
                elapsed = f"{entry.elapsed_time:.1f}s" if entry.elapsed_time is not None else "-"
                print(
                    f"  {entry.rank:>3}. {entry.nickname or entry.participant_id:<20} "
                    f"{entry.status.value:<12} {entry.distance_covered:>9.1f} m  {elapsed}"
                )
            for entry in standings.unranked:
                print(f"    -  {entry.nickname or entry.participant_id:<20} {entry.status.value}")

        if args.zoom is not None:
            view = service.get_realtime_view(course_id, args.zoom)
            print(json.dumps(view.to_dict(), indent=2))


if __name__ == '__main__':
    main()
