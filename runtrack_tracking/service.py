"""
Tracking Service - Live race tracking orchestrator.

This module provides the TrackingService class which wires the tracking
pipeline together: ping ingestion, course mapping, crossing detection,
progress, standings, realtime views and MQTT publishing.

Architecture:
- ProgressTracker owns authoritative progress (per-participant locks)
- RankingEngine recomputes standings on crossings and lifecycle changes
- LocationAggregator builds zoom-aware views from the hot-state store
- MQTT publishing in a dedicated thread fed by a bounded queue

Threading Model:
- Ping Subscriber Thread (paho-mqtt internal, calls ingest_ping)
- Control Plane Thread (paho-mqtt internal, command handlers)
- Sweeper Thread (our thread, silence timeouts and view refresh)
- MQTT Publisher Thread (our thread)
"""

import logging
import queue
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from runtrack_course.analytics.aggregator import LivePosition, LocationAggregator, RealtimeView
from runtrack_course.analytics.crossing import CheckpointCrossingDetector
from runtrack_course.analytics.ranking import RankingEngine, RankingEntry, RankingInput, Standings
from runtrack_course.analytics.session import ParticipationStatus
from runtrack_course.geometry.mapper import CoursePositionMapper, Ping
from runtrack_course.geometry.smoothing import KalmanSmoother
from runtrack_mqtt.schemas import CrossingEventMessage, PingMessage, RealtimeViewMessage
from runtrack_tracking.config import TrackingConfig
from runtrack_tracking.errors import (
    CourseDataUnavailableError,
    MalformedPingError,
    RejectReason,
    UnknownParticipantOrCourseError,
    validate_zoom_level,
)
from runtrack_tracking.progress import ParticipantProgress, PingOutcome, ProgressTracker, SplitTime
from runtrack_tracking.stores import CourseStore, HotStateStore, InMemoryHotStateStore

logger = logging.getLogger(__name__)

_PARTICIPANT_FIELDS = ('course_id', 'participant_id')


class TrackingService:
    """
    Main tracking service.

    Runs fully in-process without MQTT (publishers, subscriber and control
    plane are optional), which is how tests and offline replay use it.

    Thread Safety:
    - tracker: per-participant locks (internal)
    - ranking recompute: _ranking_lock (snapshot + compute + store together)
    - publish_queue: Thread-safe queue.Queue

    Usage:
        config = TrackingConfig.from_yaml("config/tracking_config.yaml")
        service = TrackingService(
            config=config,
            course_store=YamlCourseStore(config.courses_dir),
            control_plane=control_plane,
            crossing_publisher=crossing_publisher,
            view_publisher=view_publisher,
            ping_subscriber=ping_subscriber,
        )
        service.start()
        service.wait()
    """

    def __init__(
        self,
        config: TrackingConfig,
        course_store: CourseStore,
        hot_state: Optional[HotStateStore] = None,
        control_plane=None,  # MQTTControlPlane
        crossing_publisher=None,  # CrossingEventPublisher
        view_publisher=None,  # RealtimeViewPublisher
        ping_subscriber=None,  # PingSubscriber
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.course_store = course_store
        self.hot_state = hot_state if hot_state is not None else InMemoryHotStateStore()
        self.control_plane = control_plane
        self.crossing_publisher = crossing_publisher
        self.view_publisher = view_publisher
        self.ping_subscriber = ping_subscriber
        self.clock = clock

        mapping = config.mapping
        smoother = None
        if mapping.smoothing_enabled:
            smoother = KalmanSmoother(
                process_noise=mapping.smoothing_process_noise,
                measurement_noise=mapping.smoothing_measurement_noise,
            )

        self.tracker = ProgressTracker(
            course_store=course_store,
            mapper=CoursePositionMapper(
                lateral_tolerance_m=mapping.lateral_tolerance_m,
                backward_slack=mapping.backward_slack,
                forward_window=mapping.forward_window,
                max_forward_window=mapping.max_forward_window,
                heading_weight=mapping.heading_weight,
                teleport_min_distance_m=mapping.teleport_min_distance_m,
                max_speed_kmh=mapping.speed_ceilings(),
            ),
            detector=CheckpointCrossingDetector(hysteresis_m=config.crossing.hysteresis_m),
            smoother=smoother,
        )
        self.ranking = RankingEngine()
        self.aggregator = LocationAggregator(
            cell_size_px=config.aggregation.cell_size_px,
            cluster_max_zoom=config.aggregation.cluster_max_zoom,
        )
        self._ranking_lock = threading.Lock()

        # MQTT publishing
        self.publish_queue = queue.Queue(maxsize=config.publish_queue_size)
        self.publisher_thread = None
        self.sweeper_thread = None
        self.stop_event = threading.Event()

        # Lifecycle state
        self._running = False
        self._stopped_event = threading.Event()

        if control_plane is not None:
            self._setup_control_handlers()
        if ping_subscriber is not None:
            ping_subscriber.on_ping = self.ingest_message

        logger.info(f"TrackingService initialized for service_id={config.service_id}")

    # ─────────────────────────────────────────────────────────────────────
    # Ping ingestion
    # ─────────────────────────────────────────────────────────────────────

    def ingest_ping(
        self,
        participant_id: str,
        course_id: str,
        latitude: float,
        longitude: float,
        timestamp: float,
        altitude: Optional[float] = None,
        heading: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> PingOutcome:
        """
        Ingest one GPS ping.

        Returns:
            PingOutcome: accepted (with crossings) or rejected with a reason

        Raises:
            UnknownParticipantOrCourseError: course or participant not found
            CourseDataUnavailableError: course data missing or invalid
        """
        try:
            ping = Ping(
                latitude=latitude,
                longitude=longitude,
                timestamp=timestamp,
                altitude=altitude,
                heading=heading,
                speed=speed,
            )
        except MalformedPingError as e:
            logger.warning(f"⚠️ Malformed ping from {participant_id}@{course_id}: {e}")
            return PingOutcome.reject(RejectReason.MALFORMED, str(e))

        outcome = self.tracker.apply_ping(participant_id, course_id, ping)
        if not outcome.accepted:
            return outcome

        progress = outcome.progress
        self.hot_state.put_position(course_id, self._live_position(progress))

        if outcome.crossings:
            for event in outcome.crossings:
                logger.info(
                    f"🚩 {participant_id} crossed {event.checkpoint_id} "
                    f"(#{event.checkpoint_index}) on {course_id}"
                )
            self.recompute_standings(course_id)
            if self.crossing_publisher is not None:
                for event in outcome.crossings:
                    msg = CrossingEventMessage.from_event(
                        event,
                        service_id=self.config.service_id,
                        elapsed_time=progress.elapsed_time,
                    )
                    self._enqueue("crossing", msg)
        return outcome

    def ingest_message(self, msg: PingMessage) -> Optional[PingOutcome]:
        """
        Ingest a ping received over MQTT (Ping Subscriber Thread).

        Unknown participants/courses and unavailable course data are logged
        and dropped: there is no caller to raise to.
        """
        try:
            return self.ingest_ping(
                participant_id=msg.participant_id,
                course_id=msg.course_id,
                latitude=msg.latitude,
                longitude=msg.longitude,
                timestamp=msg.timestamp,
                altitude=msg.altitude,
                heading=msg.heading,
                speed=msg.speed,
            )
        except UnknownParticipantOrCourseError as e:
            logger.warning(f"⚠️ Ping dropped: {e}")
        except CourseDataUnavailableError as e:
            logger.error(f"❌ Ping dropped: {e}")
        return None

    def _live_position(self, progress: ParticipantProgress) -> LivePosition:
        ping = progress.last_ping
        return LivePosition(
            participant_id=progress.participant_id,
            latitude=ping.latitude,
            longitude=ping.longitude,
            timestamp=ping.timestamp,
            nickname=self._participant_field(progress, 'nickname'),
            altitude=ping.altitude,
            heading=ping.heading,
            speed=ping.speed,
            distance_covered=progress.distance_covered,
        )

    def _participant_field(self, progress: ParticipantProgress, name: str) -> str:
        try:
            participant = self.course_store.get_participant(progress.course_id, progress.participant_id)
        except UnknownParticipantOrCourseError:
            return progress.participant_id if name == 'nickname' else ""
        return getattr(participant, name) or (progress.participant_id if name == 'nickname' else "")

    # ─────────────────────────────────────────────────────────────────────
    # Standings and views
    # ─────────────────────────────────────────────────────────────────────

    def recompute_standings(self, course_id: str) -> Standings:
        """Rank a fresh snapshot of the course and store it in the hot state."""
        with self._ranking_lock:
            inputs = [
                RankingInput(
                    participant_id=p.participant_id,
                    status=p.participation,
                    distance_covered=p.distance_covered,
                    furthest_checkpoint_index=p.last_crossed_index,
                    furthest_crossing_ts=p.furthest_crossing_ts,
                    elapsed_time=p.running_time,
                    nickname=self._participant_field(p, 'nickname'),
                    bib_number=self._participant_field(p, 'bib_number'),
                )
                for p in self.tracker.snapshot_all(course_id)
            ]
            standings = self.ranking.recompute(course_id, inputs, now=self.clock())
            self.hot_state.put_standings(course_id, standings)
        return standings

    def get_standings(self, course_id: str) -> Standings:
        """
        Most recent standings for a course (computed on first read).

        Raises:
            UnknownParticipantOrCourseError: course not found
        """
        self.course_store.get_course(course_id)
        standings = self.ranking.standings(course_id)
        if standings is None:
            standings = self.hot_state.get_standings(course_id)
        if standings is None:
            standings = self.recompute_standings(course_id)
        return standings

    def get_realtime_view(self, course_id: str, zoom_level: int) -> RealtimeView:
        """
        Aggregated view of a course at a zoom level.

        Raises:
            InvalidZoomLevelError: zoom not an integer in [1, 20]
            UnknownParticipantOrCourseError: course not found
        """
        zoom = validate_zoom_level(zoom_level)
        standings = self.get_standings(course_id)
        top = tuple(
            self._with_running_time(course_id, entry)
            for entry in standings.top(self.config.aggregation.top_n)
        )
        return self.aggregator.aggregate(
            course_id,
            self.hot_state.get_positions(course_id),
            zoom,
            top3=top,
            now=self.clock(),
        )

    def _with_running_time(self, course_id: str, entry: RankingEntry) -> RankingEntry:
        # Standings are recomputed on crossings; running time moves with every ping
        if entry.status != ParticipationStatus.IN_PROGRESS:
            return entry
        try:
            progress = self.tracker.snapshot(entry.participant_id, course_id)
        except UnknownParticipantOrCourseError:
            return entry
        return replace(entry, elapsed_time=progress.running_time)

    def get_split_times(self, participant_id: str, course_id: str) -> List[SplitTime]:
        return self.tracker.split_times(participant_id, course_id)

    def get_progress(self, participant_id: str, course_id: str) -> ParticipantProgress:
        return self.tracker.snapshot(participant_id, course_id)

    def publish_views(self, course_id: str) -> int:
        """Queue views for every configured zoom level. Returns the number queued."""
        if self.view_publisher is None:
            return 0
        queued = 0
        for zoom in self.config.aggregation.publish_zoom_levels:
            view = self.get_realtime_view(course_id, zoom)
            if self._enqueue("view", RealtimeViewMessage.from_view(view)):
                queued += 1
        return queued

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle commands
    # ─────────────────────────────────────────────────────────────────────

    def start_session(self, participant_id: str, course_id: str, timestamp: Optional[float] = None) -> ParticipantProgress:
        record = self.tracker.start(participant_id, course_id, timestamp)
        self.recompute_standings(course_id)
        return record

    def pause_session(self, participant_id: str, course_id: str) -> ParticipantProgress:
        return self.tracker.pause(participant_id, course_id)

    def resume_session(self, participant_id: str, course_id: str) -> ParticipantProgress:
        return self.tracker.resume(participant_id, course_id)

    def stop_session(self, participant_id: str, course_id: str) -> ParticipantProgress:
        record = self.tracker.stop(participant_id, course_id)
        self.recompute_standings(course_id)
        return record

    def mark_dns(self, participant_id: str, course_id: str) -> ParticipantProgress:
        record = self.tracker.mark_dns(participant_id, course_id)
        self.recompute_standings(course_id)
        return record

    def mark_dnf(self, participant_id: str, course_id: str) -> ParticipantProgress:
        record = self.tracker.mark_dnf(participant_id, course_id)
        self.recompute_standings(course_id)
        return record

    def sweep(self, now: Optional[float] = None) -> List[ParticipantProgress]:
        """Apply the ping-silence timeout and refresh affected standings."""
        now = self.clock() if now is None else now
        changed = self.tracker.sweep_silent(now, self.config.session.silence_timeout_s)
        for course_id in sorted({record.course_id for record in changed}):
            self.recompute_standings(course_id)
        return changed

    def reset_course(self, course_id: str) -> int:
        """
        Drop all progress, standings and live positions for a course.

        Returns:
            Number of progress records removed
        """
        self.course_store.get_course(course_id)
        with self._ranking_lock:
            removed = self.tracker.reset_course(course_id)
            self.ranking.invalidate(course_id)
            self.hot_state.clear_course(course_id)
        return removed

    def repopulate_hot_state(self, course_id: str) -> int:
        """
        Rebuild the hot-state store for a course from authoritative progress.

        Returns:
            Number of live positions written
        """
        self.course_store.get_course(course_id)
        self.hot_state.clear_course(course_id)
        written = 0
        for progress in self.tracker.snapshot_all(course_id):
            if progress.last_ping is None:
                continue
            self.hot_state.put_position(course_id, self._live_position(progress))
            written += 1
        self.recompute_standings(course_id)
        logger.info(f"♻️ Hot state rebuilt for {course_id}: {written} positions")
        return written

    def course_ids(self) -> List[str]:
        return self.course_store.list_course_ids()

    # ─────────────────────────────────────────────────────────────────────
    # Service lifecycle
    # ─────────────────────────────────────────────────────────────────────

    def start(self):
        """
        Start the tracking service (non-blocking).

        Lifecycle:
        1. Connect control plane
        2. Connect publishers
        3. Start publisher and sweeper threads
        4. Connect ping subscriber
        """
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting tracking service")

        if self.control_plane is not None and not self.control_plane.connect(timeout=5.0):
            raise RuntimeError("Failed to connect to MQTT broker (control plane)")

        for publisher in (self.crossing_publisher, self.view_publisher):
            if publisher is not None:
                publisher.connect()

        self.stop_event.clear()
        self._stopped_event.clear()
        self.publisher_thread = threading.Thread(
            target=self._publish_loop,
            name="MQTTPublisherThread",
            daemon=True
        )
        self.publisher_thread.start()
        self.sweeper_thread = threading.Thread(
            target=self._sweep_loop,
            name="SessionSweeperThread",
            daemon=True
        )
        self.sweeper_thread.start()
        logger.info("Publisher and sweeper threads started")

        if self.ping_subscriber is not None:
            if not self.ping_subscriber.connect():
                raise RuntimeError("Failed to connect to MQTT broker (ping subscriber)")
            self.ping_subscriber.start()

        self._running = True
        if self.control_plane is not None:
            self.control_plane.publish_status("running")
        logger.info("✅ Tracking service started")

    def wait(self):
        """Block until stop() is called."""
        if not self._running:
            logger.warning("Service not running")
            return

        try:
            while not self._stopped_event.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Received KeyboardInterrupt, stopping...")
            self.stop()

    def stop(self):
        """
        Stop the tracking service gracefully.

        Lifecycle:
        1. Stop ping subscriber (no new input)
        2. Stop sweeper and publisher threads (queue drained)
        3. Disconnect publishers
        4. Disconnect control plane
        """
        if not self._running:
            logger.warning("Service not running")
            return

        logger.info("Stopping tracking service")

        if self.ping_subscriber is not None:
            self.ping_subscriber.stop()

        self.stop_event.set()
        for thread in (self.sweeper_thread, self.publisher_thread):
            if thread is not None:
                thread.join(timeout=5.0)
        logger.info("Publisher and sweeper threads stopped")

        for publisher in (self.crossing_publisher, self.view_publisher):
            if publisher is not None:
                publisher.disconnect()

        if self.control_plane is not None:
            self.control_plane.publish_status("stopped")
            self.control_plane.disconnect()

        self._running = False
        self._stopped_event.set()
        logger.info("✅ Tracking service stopped")

    @property
    def running(self) -> bool:
        return self._running

    def _enqueue(self, msg_type: str, msg) -> bool:
        try:
            self.publish_queue.put_nowait((msg_type, msg))
            return True
        except queue.Full:
            logger.warning(f"Publish queue full, dropping {msg_type} message")
            return False

    def _publish_loop(self):
        """
        MQTT publisher thread loop.

        Drains the publish queue until stopped, then flushes what is left.

        Thread: MQTT Publisher Thread (our thread)
        """
        logger.info("MQTT publisher loop started")

        while not self.stop_event.is_set() or not self.publish_queue.empty():
            try:
                msg_type, msg = self.publish_queue.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                if msg_type == "crossing":
                    self.crossing_publisher.publish_crossing(msg)
                elif msg_type == "view":
                    self.view_publisher.publish_view(msg)
            except Exception as e:
                logger.error(f"Error publishing {msg_type}: {e}", exc_info=True)

        logger.info("MQTT publisher loop stopped")

    def _sweep_loop(self):
        """
        Sweeper thread loop: silence timeouts and periodic view refresh.

        Thread: Session Sweeper Thread (our thread)
        """
        interval = self.config.session.sweep_interval_s
        while not self.stop_event.wait(timeout=interval):
            try:
                self.sweep()
                for course_id in self.tracker.course_ids():
                    self.publish_views(course_id)
            except Exception as e:
                logger.error(f"Error during sweep: {e}", exc_info=True)

    # ─────────────────────────────────────────────────────────────────────
    # Command Handlers (called by Control Plane Thread)
    # ─────────────────────────────────────────────────────────────────────

    def _setup_control_handlers(self):
        """Register command handlers with the control plane."""
        registry = self.control_plane.command_registry

        registry.register("start", self._handle_start, "Start a participant session", _PARTICIPANT_FIELDS)
        registry.register("pause", self._handle_pause, "Pause a participant session", _PARTICIPANT_FIELDS)
        registry.register("resume", self._handle_resume, "Resume a paused session", _PARTICIPANT_FIELDS)
        registry.register("stop", self._handle_stop, "Stop a participant session", _PARTICIPANT_FIELDS)
        registry.register("mark_dns", self._handle_mark_dns, "Mark participant Did Not Start", _PARTICIPANT_FIELDS)
        registry.register("mark_dnf", self._handle_mark_dnf, "Mark participant Did Not Finish", _PARTICIPANT_FIELDS)
        registry.register("progress", self._handle_progress, "Get participant progress", _PARTICIPANT_FIELDS)
        registry.register("splits", self._handle_splits, "Get participant split times", _PARTICIPANT_FIELDS)
        registry.register("standings", self._handle_standings, "Get course standings", ('course_id',))
        registry.register("view", self._handle_view, "Get realtime view", ('course_id', 'zoom'))
        registry.register("reset_course", self._handle_reset_course, "Drop all progress for a course", ('course_id',))
        registry.register("repopulate", self._handle_repopulate, "Rebuild hot state for a course", ('course_id',))
        registry.register("list_courses", self._handle_list_courses, "List course ids")
        registry.register("status", self._handle_status, "Service status")
        registry.register("help", self._handle_help, "List available commands")

        logger.info("Control handlers registered")

    def _handle_start(self, command: Dict):
        record = self.start_session(command["participant_id"], command["course_id"], command.get("timestamp"))
        return record.to_dict()

    def _handle_pause(self, command: Dict):
        return self.pause_session(command["participant_id"], command["course_id"]).to_dict()

    def _handle_resume(self, command: Dict):
        return self.resume_session(command["participant_id"], command["course_id"]).to_dict()

    def _handle_stop(self, command: Dict):
        return self.stop_session(command["participant_id"], command["course_id"]).to_dict()

    def _handle_mark_dns(self, command: Dict):
        return self.mark_dns(command["participant_id"], command["course_id"]).to_dict()

    def _handle_mark_dnf(self, command: Dict):
        return self.mark_dnf(command["participant_id"], command["course_id"]).to_dict()

    def _handle_progress(self, command: Dict):
        return self.get_progress(command["participant_id"], command["course_id"]).to_dict()

    def _handle_splits(self, command: Dict):
        splits = self.get_split_times(command["participant_id"], command["course_id"])
        return {"splits": [s.to_dict() for s in splits]}

    def _handle_standings(self, command: Dict):
        standings = self.get_standings(command["course_id"])
        offset = int(command.get("offset", 0))
        limit = int(command.get("limit", 50))
        page = standings.page(offset, limit)
        return {
            "course_id": standings.course_id,
            "total": len(standings),
            "entries": [e.to_dict() for e in page],
            "unranked": [e.to_dict() for e in standings.unranked],
        }

    def _handle_view(self, command: Dict):
        return self.get_realtime_view(command["course_id"], command["zoom"]).to_dict()

    def _handle_reset_course(self, command: Dict):
        return {"course_id": command["course_id"], "removed": self.reset_course(command["course_id"])}

    def _handle_repopulate(self, command: Dict):
        return {"course_id": command["course_id"], "positions": self.repopulate_hot_state(command["course_id"])}

    def _handle_list_courses(self, command: Dict):
        return {"courses": self.course_ids()}

    def _handle_status(self, command: Dict):
        status = {
            "service_id": self.config.service_id,
            "running": self._running,
            "tracked_sessions": len(self.tracker),
            "courses": self.tracker.course_ids(),
            "publish_queue_size": self.publish_queue.qsize(),
        }
        if self.crossing_publisher is not None:
            status["crossing_publisher"] = self.crossing_publisher.get_stats()
        if self.ping_subscriber is not None:
            status["ping_subscriber"] = self.ping_subscriber.get_stats()
        return status

    def _handle_help(self, command: Dict):
        return {"commands": self.control_plane.command_registry.get_help()}
