"""
runtrack_control - Control Plane for the tracking service

Bounded Context: MQTT-based command-and-control
Responsibilities:
  - MQTT connection management (Control Plane)
  - Command registration and payload validation
  - Command execution delegation and reply publishing

Architecture:
  - CommandRegistry: Explicit registration pattern
  - MQTTControlPlane: MQTT client + command reception
  - QoS 1 for control commands (at-least-once delivery)
"""

from .registry import CommandRegistry, CommandNotAvailableError, CommandValidationError
from .plane import MQTTControlPlane

__all__ = [
    "CommandRegistry",
    "CommandNotAvailableError",
    "CommandValidationError",
    "MQTTControlPlane",
]
