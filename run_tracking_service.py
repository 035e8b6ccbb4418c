#!/usr/bin/env python3
"""
Tracking Service - Entry Point
==============================

This script starts the runtrack tracking service, which:
- Consumes participant GPS pings from MQTT
- Maps pings onto race courses and detects checkpoint crossings
- Maintains live progress and standings
- Publishes crossings and realtime views to MQTT
- Responds to control commands via MQTT control plane

Usage:
    python run_tracking_service.py --config config/tracking_config.yaml

Lifecycle:
    1. Load configuration from YAML
    2. Setup logging (console + file)
    3. Load courses, create control plane, publishers and subscriber
    4. Create TrackingService
    5. Start service (non-blocking)
    6. Wait for stop signal (Ctrl+C or SIGTERM)
    7. Graceful shutdown

Logs:
    - Console: INFO level
    - File: logs/tracking.log (INFO level)
"""

import argparse
import signal
import sys
import logging
from pathlib import Path
from typing import Optional

from runtrack_tracking import TrackingService, YamlCourseStore
from runtrack_tracking.config import TrackingConfig
from runtrack_control import MQTTControlPlane
from runtrack_mqtt import CrossingEventPublisher, PingSubscriber, RealtimeViewPublisher, create_logger


# ─────────────────────────────────────────────────────────────────────────────
# Logging Setup
# ─────────────────────────────────────────────────────────────────────────────

def setup_logging(log_file: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    """Configure root logging (console + optional file)."""
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            *(
                [logging.FileHandler(log_file)]
                if log_file
                else []
            )
        ]
    )

    return logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Main Service
# ─────────────────────────────────────────────────────────────────────────────

class TrackingApp:
    """
    Application wrapper for TrackingService.

    Handles configuration loading, component wiring, signal handling and
    graceful shutdown.
    """

    def __init__(self, config_path: Path, log_file: Optional[Path] = None, verbose: bool = False):
        self.config_path = config_path
        self.log_file = log_file
        self.logger = setup_logging(log_file, logging.DEBUG if verbose else logging.INFO)

        self.config: Optional[TrackingConfig] = None
        self.service: Optional[TrackingService] = None

        self._shutdown_requested = False

    def setup(self):
        """Load configuration and wire every component."""
        self.logger.info("=" * 80)
        self.logger.info("🚀 Runtrack Tracking Service - Starting")
        self.logger.info("=" * 80)

        self.logger.info(f"📄 Loading configuration: {self.config_path}")
        self.config = TrackingConfig.from_yaml(self.config_path)
        self.config.validate_paths()
        self.logger.info(f"✅ Configuration loaded (service_id={self.config.service_id})")

        course_store = YamlCourseStore(
            self.config.courses_dir,
            densify_spacing_m=self.config.mapping.densify_spacing_m,
        )
        self.logger.info(f"🗺️  Courses loaded: {', '.join(course_store.list_course_ids()) or 'none'}")

        mqtt_cfg = self.config.mqtt_config
        service_id = self.config.service_id
        mqtt_logger = create_logger("tracking")

        self.logger.info("🔌 Creating MQTT control plane")
        control_plane = MQTTControlPlane(
            broker_host=mqtt_cfg.broker,
            broker_port=mqtt_cfg.port,
            command_topic=mqtt_cfg.topic(mqtt_cfg.command_topic, service_id),
            status_topic=mqtt_cfg.topic(mqtt_cfg.status_topic, service_id),
            client_id=f"tracking_{service_id}",
            username=mqtt_cfg.username,
            password=mqtt_cfg.password,
        )

        self.logger.info("📤 Creating MQTT publishers")
        crossing_topic = mqtt_cfg.topic(mqtt_cfg.crossing_topic, service_id)
        crossing_publisher = CrossingEventPublisher(
            broker_host=mqtt_cfg.broker,
            broker_port=mqtt_cfg.port,
            topic=crossing_topic,
            logger=mqtt_logger,
            client_id=f"publisher_crossings_{service_id}",
            username=mqtt_cfg.username,
            password=mqtt_cfg.password,
            qos=1,
        )
        view_topic = mqtt_cfg.topic(mqtt_cfg.view_topic, service_id)
        view_publisher = RealtimeViewPublisher(
            broker_host=mqtt_cfg.broker,
            broker_port=mqtt_cfg.port,
            topic=view_topic,
            logger=mqtt_logger,
            client_id=f"publisher_views_{service_id}",
            username=mqtt_cfg.username,
            password=mqtt_cfg.password,
            qos=mqtt_cfg.qos,
        )

        ping_topic = mqtt_cfg.topic(mqtt_cfg.ping_topic, service_id)
        ping_subscriber = PingSubscriber(
            broker_host=mqtt_cfg.broker,
            broker_port=mqtt_cfg.port,
            ping_topic=ping_topic,
            on_ping=lambda msg: None,  # replaced by TrackingService
            logger=mqtt_logger,
            client_id=f"subscriber_pings_{service_id}",
            username=mqtt_cfg.username,
            password=mqtt_cfg.password,
            qos=mqtt_cfg.qos,
        )

        self.logger.info(f"  - Ping topic: {ping_topic}")
        self.logger.info(f"  - Crossing topic: {crossing_topic}")
        self.logger.info(f"  - View topic: {view_topic}")

        self.service = TrackingService(
            config=self.config,
            course_store=course_store,
            control_plane=control_plane,
            crossing_publisher=crossing_publisher,
            view_publisher=view_publisher,
            ping_subscriber=ping_subscriber,
        )
        self.logger.info("✅ Service created")

    def run(self):
        """Start the service and block until stopped."""
        if not self.service:
            raise RuntimeError("Service not initialized. Call setup() first.")

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            self.service.start()
            self.logger.info("✅ Service started successfully")
            self.logger.info("Press Ctrl+C to stop")
            self.logger.info("=" * 80)
            self.service.wait()

        except KeyboardInterrupt:
            self.logger.info("⚠️  KeyboardInterrupt received")
            self.shutdown()

        except RuntimeError as e:
            self.logger.error(f"❌ Service error: {e}", exc_info=True)
            self.shutdown()
            sys.exit(1)

    def shutdown(self):
        """Graceful shutdown (idempotent)."""
        if self._shutdown_requested:
            self.logger.warning("⚠️  Shutdown already in progress")
            return

        self._shutdown_requested = True

        self.logger.info("=" * 80)
        self.logger.info("🛑 Shutting down tracking service")
        self.logger.info("=" * 80)

        if self.service and self.service.running:
            self.service.stop()

        self.logger.info("✅ Shutdown complete")

    def _signal_handler(self, signum, frame):
        signal_name = signal.Signals(signum).name
        self.logger.info(f"⚠️  Received signal {signal_name} ({signum})")
        self.shutdown()
        sys.exit(0)


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

def parse_args():
    parser = argparse.ArgumentParser(
        description="Runtrack Tracking Service - GPS pings + course mapping + MQTT",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with default config
  python run_tracking_service.py --config config/tracking_config.yaml

  # Console only, debug logging
  python run_tracking_service.py --config config/tracking_config.yaml --no-log-file -v
        """
    )

    parser.add_argument(
        '--config',
        type=Path,
        required=True,
        help='Path to tracking configuration YAML file'
    )
    parser.add_argument(
        '--log-file',
        type=Path,
        default=Path('logs/tracking.log'),
        help='Path to log file (default: logs/tracking.log)'
    )
    parser.add_argument(
        '--no-log-file',
        action='store_true',
        help='Disable file logging (console only)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Debug logging (includes stale ping drops)'
    )

    return parser.parse_args()


def main():
    args = parse_args()
    log_file = None if args.no_log_file else args.log_file

    if not args.config.exists():
        print(f"❌ Error: Configuration file not found: {args.config}", file=sys.stderr)
        sys.exit(1)

    app = TrackingApp(config_path=args.config, log_file=log_file, verbose=args.verbose)

    try:
        app.setup()
        app.run()
    except (OSError, ValueError) as e:
        print(f"❌ Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
