"""
Configuration schema for the tracking service.

This module defines the configuration structure for the tracking service,
including ping mapping tolerances, crossing detection, session timeouts,
view aggregation and MQTT settings.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from runtrack_course.geometry.course import DEFAULT_DENSIFY_SPACING_M, Discipline
from runtrack_course.geometry.mapper import DEFAULT_MAX_SPEED_KMH


@dataclass(frozen=True)
class MappingConfig:
    """
    Ping-to-course mapping configuration.

    Window sizes are in route segments (route densified to densify_spacing_m).
    """

    lateral_tolerance_m: float = 100.0
    backward_slack: int = 3
    forward_window: int = 20
    max_forward_window: int = 500
    densify_spacing_m: float = DEFAULT_DENSIFY_SPACING_M
    heading_weight: float = 0.0
    teleport_min_distance_m: float = 25.0
    max_speed_kmh: Dict[str, float] = field(
        default_factory=lambda: {d.value: v for d, v in DEFAULT_MAX_SPEED_KMH.items()}
    )
    smoothing_enabled: bool = False
    smoothing_process_noise: float = 0.001
    smoothing_measurement_noise: float = 0.01

    def __post_init__(self):
        """Validate mapping configuration."""
        if self.lateral_tolerance_m <= 0:
            raise ValueError(
                f"lateral_tolerance_m must be > 0, got {self.lateral_tolerance_m}"
            )

        if self.densify_spacing_m <= 0:
            raise ValueError(
                f"densify_spacing_m must be > 0, got {self.densify_spacing_m}"
            )

        if not 0.0 <= self.heading_weight <= 1.0:
            raise ValueError(
                f"heading_weight must be in [0.0, 1.0], got {self.heading_weight}"
            )

        valid_disciplines = {d.value for d in Discipline}
        for name, kmh in self.max_speed_kmh.items():
            if name not in valid_disciplines:
                raise ValueError(
                    f"Invalid discipline in max_speed_kmh: {name}. "
                    f"Must be one of {valid_disciplines}"
                )
            if kmh <= 0:
                raise ValueError(f"max_speed_kmh[{name}] must be > 0, got {kmh}")

    def speed_ceilings(self) -> Dict[Discipline, float]:
        """max_speed_kmh keyed by Discipline, defaults filled in."""
        ceilings = dict(DEFAULT_MAX_SPEED_KMH)
        ceilings.update({Discipline(name): kmh for name, kmh in self.max_speed_kmh.items()})
        return ceilings


@dataclass(frozen=True)
class CrossingConfig:
    """Checkpoint crossing configuration."""

    hysteresis_m: float = 3.0

    def __post_init__(self):
        if self.hysteresis_m < 0:
            raise ValueError(f"hysteresis_m must be >= 0, got {self.hysteresis_m}")


@dataclass(frozen=True)
class SessionConfig:
    """Session lifecycle configuration."""

    silence_timeout_s: float = 1800.0
    sweep_interval_s: float = 30.0

    def __post_init__(self):
        if self.silence_timeout_s <= 0:
            raise ValueError(f"silence_timeout_s must be > 0, got {self.silence_timeout_s}")
        if self.sweep_interval_s <= 0:
            raise ValueError(f"sweep_interval_s must be > 0, got {self.sweep_interval_s}")


@dataclass(frozen=True)
class AggregationConfig:
    """Realtime view aggregation configuration."""

    cell_size_px: int = 64
    cluster_max_zoom: int = 15
    top_n: int = 3
    publish_zoom_levels: tuple = ()

    def __post_init__(self):
        """Validate aggregation configuration."""
        if self.cell_size_px <= 0:
            raise ValueError(f"cell_size_px must be > 0, got {self.cell_size_px}")

        if not 1 <= self.cluster_max_zoom <= 20:
            raise ValueError(
                f"cluster_max_zoom must be in [1, 20], got {self.cluster_max_zoom}"
            )

        if self.top_n < 1:
            raise ValueError(f"top_n must be >= 1, got {self.top_n}")

        for zoom in self.publish_zoom_levels:
            if not 1 <= zoom <= 20:
                raise ValueError(f"publish_zoom_levels entries must be in [1, 20], got {zoom}")


@dataclass(frozen=True)
class MQTTConfig:
    """MQTT broker configuration."""

    broker: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    qos: int = 0  # Data plane QoS (fire-and-forget)

    ping_topic: str = "runtrack/data/pings/{service_id}"
    crossing_topic: str = "runtrack/data/crossings/{service_id}"
    view_topic: str = "runtrack/data/views/{service_id}/{course_id}/{zoom}"
    command_topic: str = "runtrack/control/{service_id}/commands"
    status_topic: str = "runtrack/control/{service_id}/status"

    def __post_init__(self):
        """Validate MQTT configuration."""
        if not 1 <= self.port <= 65535:
            raise ValueError(
                f"MQTT port must be in [1, 65535], got {self.port}"
            )

        if self.qos not in {0, 1, 2}:
            raise ValueError(
                f"MQTT QoS must be 0, 1, or 2, got {self.qos}"
            )

    def topic(self, template: str, service_id: str) -> str:
        """Resolve the {service_id} placeholder, leaving any others in place."""
        return template.replace("{service_id}", service_id)


@dataclass(frozen=True)
class TrackingConfig:
    """
    Main configuration for the tracking service.

    This configuration is loaded from YAML and validated at startup.
    Immutable after construction (frozen dataclass).
    """

    # Service identification
    service_id: str

    # Course data (YAML course store directory)
    courses_dir: Path = Path("./config/courses")

    mapping: MappingConfig = field(default_factory=MappingConfig)
    crossing: CrossingConfig = field(default_factory=CrossingConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    mqtt_config: MQTTConfig = field(default_factory=MQTTConfig)

    publish_queue_size: int = 512

    def __post_init__(self):
        """Validate tracking configuration."""
        if not self.service_id:
            raise ValueError("service_id cannot be empty")

        if self.publish_queue_size < 1:
            raise ValueError(
                f"publish_queue_size must be >= 1, got {self.publish_queue_size}"
            )

    def validate_paths(self) -> None:
        """
        Check that courses_dir exists (called by the entry point, not tests).

        Raises:
            FileNotFoundError: courses_dir missing
            ValueError: courses_dir is a file
        """
        if not self.courses_dir.exists():
            raise FileNotFoundError(
                f"Courses directory not found: {self.courses_dir}\n"
                "Create directory or update 'courses_dir' in config"
            )

        if not self.courses_dir.is_dir():
            raise ValueError(
                f"courses_dir must be a directory, got file: {self.courses_dir}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "TrackingConfig":
        """Build configuration from a parsed YAML mapping."""
        aggregation_data = dict(data.get("aggregation", {}) or {})
        if "publish_zoom_levels" in aggregation_data:
            aggregation_data["publish_zoom_levels"] = tuple(aggregation_data["publish_zoom_levels"])

        return cls(
            service_id=data["service_id"],
            courses_dir=Path(data.get("courses_dir", "./config/courses")),
            mapping=MappingConfig(**(data.get("mapping", {}) or {})),
            crossing=CrossingConfig(**(data.get("crossing", {}) or {})),
            session=SessionConfig(**(data.get("session", {}) or {})),
            aggregation=AggregationConfig(**aggregation_data),
            mqtt_config=MQTTConfig(**(data.get("mqtt_config", {}) or {})),
            publish_queue_size=data.get("publish_queue_size", 512),
        )

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "TrackingConfig":
        """
        Load configuration from YAML file.

        Example YAML:
            service_id: "race_2025"
            courses_dir: "./config/courses"

            mapping:
              lateral_tolerance_m: 100.0
              max_speed_kmh: {run: 40.0, bike: 100.0, swim: 10.0}

            crossing:
              hysteresis_m: 3.0

            session:
              silence_timeout_s: 1800

            aggregation:
              cluster_max_zoom: 15
              publish_zoom_levels: [12, 16]

            mqtt_config:
              broker: "localhost"
              port: 1883
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data)
