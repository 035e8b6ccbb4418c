"""
Course store and hot-state store contracts plus their implementations.

Contracts are typing.Protocol interfaces passed into TrackingService at
construction; tests substitute the in-memory implementations.

Course store (read-only at tracking time):
    get_course, list_course_ids, find_first_checkpoint_beyond,
    get_participant, list_participants

Hot-state store (cache, repopulatable from ProgressTracker):
    put_position, get_positions, put_standings, get_standings, clear_course

Thread Safety:
- Stores guard their dicts with a threading.Lock
- Course objects are immutable and shared without locking
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

import yaml

from runtrack_course.analytics.aggregator import LivePosition
from runtrack_course.analytics.ranking import Standings
from runtrack_course.geometry.course import (
    DEFAULT_DENSIFY_SPACING_M,
    Checkpoint,
    CheckpointType,
    Course,
    Discipline,
)
from runtrack_tracking.errors import CourseDataUnavailableError, UnknownParticipantOrCourseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Participant:
    """Roster entry for a course."""

    participant_id: str
    course_id: str
    nickname: str = ""
    bib_number: str = ""

    def __post_init__(self):
        if not self.participant_id:
            raise ValueError("participant_id cannot be empty")
        if not self.course_id:
            raise ValueError("course_id cannot be empty")


class CourseStore(Protocol):
    """Read-only course and roster data."""

    def get_course(self, course_id: str) -> Course: ...

    def list_course_ids(self) -> List[str]: ...

    def find_first_checkpoint_beyond(self, course_id: str, distance: float) -> Optional[Checkpoint]: ...

    def get_participant(self, course_id: str, participant_id: str) -> Participant: ...

    def list_participants(self, course_id: str) -> List[Participant]: ...


class HotStateStore(Protocol):
    """Low-latency cache of live positions and standings."""

    def put_position(self, course_id: str, position: LivePosition) -> None: ...

    def get_positions(self, course_id: str) -> List[LivePosition]: ...

    def put_standings(self, course_id: str, standings: Standings) -> None: ...

    def get_standings(self, course_id: str) -> Optional[Standings]: ...

    def clear_course(self, course_id: str) -> None: ...


class InMemoryCourseStore:
    """
    Course store backed by dicts.

    Args:
        courses: Courses to serve
        participants: Roster entries (any course)
        open_registration: Accept participants missing from the roster
                           (display fields default to the participant id)
    """

    def __init__(
        self,
        courses: Iterable[Course] = (),
        participants: Iterable[Participant] = (),
        open_registration: bool = False,
    ):
        self._courses: Dict[str, Course] = {}
        self._participants: Dict[str, Dict[str, Participant]] = {}
        self._lock = threading.Lock()
        self.open_registration = open_registration

        for course in courses:
            self.add_course(course)
        for participant in participants:
            self.add_participant(participant)

    def add_course(self, course: Course) -> None:
        with self._lock:
            self._courses[course.course_id] = course
            self._participants.setdefault(course.course_id, {})

    def add_participant(self, participant: Participant) -> None:
        with self._lock:
            self._participants.setdefault(participant.course_id, {})[participant.participant_id] = participant

    def get_course(self, course_id: str) -> Course:
        """
        Raises:
            UnknownParticipantOrCourseError: course not found
        """
        with self._lock:
            course = self._courses.get(course_id)
        if course is None:
            raise UnknownParticipantOrCourseError(course_id)
        return course

    def list_course_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._courses.keys())

    def find_first_checkpoint_beyond(self, course_id: str, distance: float) -> Optional[Checkpoint]:
        return self.get_course(course_id).find_first_checkpoint_beyond(distance)

    def get_participant(self, course_id: str, participant_id: str) -> Participant:
        """
        Raises:
            UnknownParticipantOrCourseError: course or participant not found
        """
        with self._lock:
            if course_id not in self._courses:
                raise UnknownParticipantOrCourseError(course_id)
            participant = self._participants.get(course_id, {}).get(participant_id)

        if participant is not None:
            return participant
        if self.open_registration and participant_id:
            return Participant(participant_id=participant_id, course_id=course_id, nickname=participant_id)
        raise UnknownParticipantOrCourseError(course_id, participant_id)

    def list_participants(self, course_id: str) -> List[Participant]:
        with self._lock:
            if course_id not in self._courses:
                raise UnknownParticipantOrCourseError(course_id)
            return sorted(self._participants.get(course_id, {}).values(), key=lambda p: p.participant_id)


class YamlCourseStore(InMemoryCourseStore):
    """
    Course store loaded from a directory of YAML files (one course per file).

    Example course YAML:
        course_id: "city-10k"
        name: "City 10K"
        discipline: "run"
        open_registration: false
        checkpoints:
          - {id: "START", type: "start", lat: 37.5665, lng: 126.9780, distance: 0}
          - {id: "CP1", type: "intermediate", lat: 37.5700, lng: 126.9830, distance: 5000}
          - {id: "FINISH", type: "finish", lat: 37.5740, lng: 126.9880, distance: 10000}
        route:            # optional [lat, lng] or [lat, lng, alt] track
          - [37.5665, 126.9780]
        participants:
          - {participant_id: "p1", nickname: "Ana", bib_number: "101"}

    A file that fails to parse or validate makes only that course unavailable.
    """

    def __init__(self, courses_dir: Path, densify_spacing_m: float = DEFAULT_DENSIFY_SPACING_M):
        super().__init__()
        self.courses_dir = Path(courses_dir)
        self.densify_spacing_m = densify_spacing_m
        self._unavailable: Dict[str, str] = {}
        self._open_courses: set = set()
        self.reload()

    def reload(self) -> None:
        """(Re)load every *.yaml / *.yml file in courses_dir."""
        paths = sorted(list(self.courses_dir.glob("*.yaml")) + list(self.courses_dir.glob("*.yml")))
        for path in paths:
            course_id = path.stem
            try:
                with open(path) as f:
                    data = yaml.safe_load(f) or {}
                course_id = data.get("course_id", path.stem)
                course = self._parse_course(course_id, data)
            except (yaml.YAMLError, AttributeError, KeyError, TypeError, ValueError) as e:
                self._unavailable[course_id] = str(e)
                logger.error(f"❌ Course '{course_id}' unavailable ({path.name}): {e}")
                continue

            self._unavailable.pop(course_id, None)
            self.add_course(course)
            if data.get("open_registration", False):
                self._open_courses.add(course_id)
            for entry in data.get("participants", []) or []:
                self.add_participant(Participant(
                    participant_id=str(entry["participant_id"]),
                    course_id=course_id,
                    nickname=entry.get("nickname", ""),
                    bib_number=str(entry.get("bib_number", "")),
                ))
            logger.info(f"📍 Loaded course {course}")

    def _parse_course(self, course_id: str, data: dict) -> Course:
        checkpoints_data = data.get("checkpoints") or []
        if not checkpoints_data:
            raise ValueError("checkpoint sequence is missing or empty")

        checkpoints = [
            Checkpoint(
                index=cp.get("index", position),
                checkpoint_type=CheckpointType(cp["type"]),
                checkpoint_id=str(cp["id"]),
                latitude=float(cp["lat"]),
                longitude=float(cp["lng"]),
                altitude=cp.get("alt"),
                distance_from_start=float(cp["distance"]),
            )
            for position, cp in enumerate(checkpoints_data)
        ]
        route = [tuple(point) for point in data.get("route", []) or []]

        return Course.build(
            course_id=course_id,
            checkpoints=checkpoints,
            route=route or None,
            discipline=Discipline(data.get("discipline", Discipline.RUN.value)),
            name=data.get("name", ""),
            densify_spacing_m=self.densify_spacing_m,
        )

    def get_course(self, course_id: str) -> Course:
        """
        Raises:
            CourseDataUnavailableError: course file exists but is invalid
            UnknownParticipantOrCourseError: no such course
        """
        if course_id in self._unavailable:
            raise CourseDataUnavailableError(course_id, self._unavailable[course_id])
        return super().get_course(course_id)

    def get_participant(self, course_id: str, participant_id: str) -> Participant:
        if course_id in self._unavailable:
            raise CourseDataUnavailableError(course_id, self._unavailable[course_id])
        try:
            return super().get_participant(course_id, participant_id)
        except UnknownParticipantOrCourseError:
            if course_id in self._open_courses and participant_id:
                return Participant(participant_id=participant_id, course_id=course_id, nickname=participant_id)
            raise


class InMemoryHotStateStore:
    """
    Dict-backed hot-state store.

    put_position keeps the newest fix per participant: an older timestamp
    never overwrites a newer one.
    """

    def __init__(self):
        self._positions: Dict[str, Dict[str, LivePosition]] = {}
        self._standings: Dict[str, Standings] = {}
        self._lock = threading.Lock()

    def put_position(self, course_id: str, position: LivePosition) -> None:
        with self._lock:
            course_positions = self._positions.setdefault(course_id, {})
            current = course_positions.get(position.participant_id)
            if current is None or position.timestamp >= current.timestamp:
                course_positions[position.participant_id] = position

    def get_positions(self, course_id: str) -> List[LivePosition]:
        with self._lock:
            return list(self._positions.get(course_id, {}).values())

    def put_standings(self, course_id: str, standings: Standings) -> None:
        with self._lock:
            self._standings[course_id] = standings

    def get_standings(self, course_id: str) -> Optional[Standings]:
        with self._lock:
            return self._standings.get(course_id)

    def clear_course(self, course_id: str) -> None:
        with self._lock:
            self._positions.pop(course_id, None)
            self._standings.pop(course_id, None)

    def __repr__(self) -> str:
        with self._lock:
            count = sum(len(p) for p in self._positions.values())
        return f"InMemoryHotStateStore(courses={len(self._positions)}, positions={count})"
