"""
Ranking Module
==============

Derives ordered standings from participant progress snapshots.

Design:
- compute() is pure: snapshot list in, immutable Standings out
- RankingEngine caches the latest Standings per course (bounded staleness)
- Total order: status group, key, crossing time at furthest checkpoint,
  participant id
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from runtrack_course.analytics.session import ParticipationStatus

TOP_N = 3

_UNRANKED = frozenset({ParticipationStatus.DNS, ParticipationStatus.DNF})


@dataclass(frozen=True)
class RankingInput:
    """Point-in-time progress fields the ranking needs for one participant."""

    participant_id: str
    status: ParticipationStatus
    distance_covered: float
    furthest_checkpoint_index: int = -1
    furthest_crossing_ts: Optional[float] = None
    elapsed_time: Optional[float] = None
    nickname: str = ""
    bib_number: str = ""


@dataclass(frozen=True)
class RankingEntry:
    """
    One standings row.

    rank is None for unranked (DNS/DNF) participants. elapsed_time is the
    final time for finishers and the running time at the last accepted
    ping for everyone else.
    """

    rank: Optional[int]
    participant_id: str
    nickname: str
    bib_number: str
    status: ParticipationStatus
    distance_covered: float
    furthest_checkpoint_index: int
    furthest_crossing_ts: Optional[float]
    elapsed_time: Optional[float]

    @property
    def comparison_key(self) -> float:
        """Elapsed time for finishers, distance covered otherwise."""
        if self.status == ParticipationStatus.FINISHED and self.elapsed_time is not None:
            return self.elapsed_time
        return self.distance_covered

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "participant_id": self.participant_id,
            "nickname": self.nickname,
            "bib_number": self.bib_number,
            "status": self.status.value,
            "distance_covered": self.distance_covered,
            "furthest_checkpoint_index": self.furthest_checkpoint_index,
            "furthest_crossing_ts": self.furthest_crossing_ts,
            "elapsed_time": self.elapsed_time,
        }


@dataclass(frozen=True)
class Standings:
    """Immutable standings for one course."""

    course_id: str
    entries: Tuple[RankingEntry, ...]
    unranked: Tuple[RankingEntry, ...] = ()
    computed_at: float = 0.0

    def top(self, n: int = TOP_N) -> Tuple[RankingEntry, ...]:
        return self.entries[:max(n, 0)]

    def rank_of(self, participant_id: str) -> Optional[int]:
        """Numbered rank of a participant, None if unranked or unknown."""
        for entry in self.entries:
            if entry.participant_id == participant_id:
                return entry.rank
        return None

    def page(self, offset: int = 0, limit: int = 50) -> Tuple[RankingEntry, ...]:
        """Slice of ranked entries (offset is 0-based)."""
        if offset < 0 or limit < 0:
            raise ValueError(f"offset and limit must be >= 0, got offset={offset}, limit={limit}")
        return self.entries[offset:offset + limit]

    def __len__(self) -> int:
        return len(self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "course_id": self.course_id,
            "computed_at": self.computed_at,
            "entries": [e.to_dict() for e in self.entries],
            "unranked": [e.to_dict() for e in self.unranked],
        }


def _sort_key(item: RankingInput) -> tuple:
    crossing_ts = item.furthest_crossing_ts if item.furthest_crossing_ts is not None else math.inf
    if item.status == ParticipationStatus.FINISHED:
        elapsed = item.elapsed_time if item.elapsed_time is not None else math.inf
        return (0, elapsed, crossing_ts, item.participant_id)
    return (1, -item.distance_covered, crossing_ts, item.participant_id)


class RankingEngine:
    """
    Computes and caches course standings.

    Finished participants always rank ahead of in-progress ones, whatever
    their distance or timing. DNS/DNF participants are listed separately
    without a rank.

    Thread-safety: the cache swap is guarded by a lock; compute() works on
    the caller's snapshot copy and never blocks ingestion.

    Usage:
        engine = RankingEngine()
        standings = engine.recompute("course-10k", inputs)
        top3 = engine.standings("course-10k").top(3)
    """

    def __init__(self):
        self._cache: Dict[str, Standings] = {}
        self._lock = threading.Lock()

    @staticmethod
    def compute(course_id: str, inputs: Iterable[RankingInput], now: Optional[float] = None) -> Standings:
        """Rank a snapshot list (pure)."""
        items = list(inputs)
        ranked = sorted((i for i in items if i.status not in _UNRANKED), key=_sort_key)
        unranked = sorted((i for i in items if i.status in _UNRANKED), key=lambda i: i.participant_id)

        entries = tuple(_entry(item, rank) for rank, item in enumerate(ranked, start=1))
        excluded = tuple(_entry(item, None) for item in unranked)
        return Standings(
            course_id=course_id,
            entries=entries,
            unranked=excluded,
            computed_at=now if now is not None else time.time(),
        )

    def recompute(self, course_id: str, inputs: Iterable[RankingInput], now: Optional[float] = None) -> Standings:
        """Compute and cache standings for a course."""
        standings = self.compute(course_id, inputs, now)
        with self._lock:
            self._cache[course_id] = standings
        return standings

    def standings(self, course_id: str) -> Optional[Standings]:
        """Most recently computed standings, None if never computed."""
        with self._lock:
            return self._cache.get(course_id)

    def invalidate(self, course_id: str) -> None:
        with self._lock:
            self._cache.pop(course_id, None)

    def courses(self) -> List[str]:
        with self._lock:
            return list(self._cache.keys())

    def __repr__(self) -> str:
        return f"RankingEngine(courses={len(self._cache)})"


def _entry(item: RankingInput, rank: Optional[int]) -> RankingEntry:
    return RankingEntry(
        rank=rank,
        participant_id=item.participant_id,
        nickname=item.nickname,
        bib_number=item.bib_number,
        status=item.status,
        distance_covered=item.distance_covered,
        furthest_checkpoint_index=item.furthest_checkpoint_index,
        furthest_crossing_ts=item.furthest_crossing_ts,
        elapsed_time=item.elapsed_time,
    )
