"""
MQTTControlPlane - MQTT Control Plane for the tracking service

Bounded Context: MQTT connection management + command reception
Responsibilities:
  - MQTT connection lifecycle (connect, disconnect)
  - Command message reception (subscribe to command topic)
  - Status and command-reply publishing (status topic)
  - Command delegation to CommandRegistry

QoS Policy:
  - Commands: QoS 1 (at-least-once delivery)
  - Status: QoS 1 + retained (last status persisted)

Threading:
  - MQTT client runs own background thread (loop_start/loop_stop)
  - Callbacks (_on_connect, _on_message) run in MQTT thread
  - Command handlers run in MQTT thread (keep them fast!)
"""

import json
import logging
from datetime import datetime, timezone
from threading import Event
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from runtrack_course.errors import TrackingError

from .registry import CommandNotAvailableError, CommandRegistry, CommandValidationError

logger = logging.getLogger(__name__)


class MQTTControlPlane:
    """
    MQTT Control Plane for receiving commands and publishing status.

    Every executed command gets a reply on the status topic:
    {"status": "ok" | "error", "command": ..., "request_id": ..., "data": ...}

    Example:
        control_plane = MQTTControlPlane(
            broker_host="localhost",
            broker_port=1883,
            command_topic="runtrack/control/tracking_01/commands",
            status_topic="runtrack/control/tracking_01/status",
            client_id="tracking_01_control",
        )
        control_plane.command_registry.register('status', service.status, "Service status")
        if control_plane.connect(timeout=5.0):
            ...
        control_plane.disconnect()
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int,
        command_topic: str,
        status_topic: str,
        client_id: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.command_topic = command_topic
        self.status_topic = status_topic
        self.client_id = client_id

        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
        )
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        if username and password:
            self.client.username_pw_set(username, password)

        self._connected = Event()
        self._running = False

        self.command_registry = CommandRegistry()

    def connect(self, timeout: float = 5.0) -> bool:
        """
        Connect to MQTT broker with timeout.

        Returns:
            True if connected successfully, False otherwise
        """
        try:
            logger.info(f"🔌 Connecting to MQTT broker: {self.broker_host}:{self.broker_port}")
            self.client.connect(self.broker_host, self.broker_port, keepalive=60)
            self.client.loop_start()
            self._running = True

            if self._connected.wait(timeout=timeout):
                logger.info("✅ MQTT Control Plane connected")
                return True
            logger.error(f"❌ Connection timeout after {timeout}s")
            return False

        except (OSError, ValueError) as e:
            logger.error(f"❌ Error connecting to MQTT: {e}")
            return False

    def disconnect(self) -> None:
        """Disconnect from MQTT broker. Safe to call multiple times."""
        if self._running:
            logger.info("🔌 Disconnecting from MQTT broker")
            self.publish_status("disconnected")
            self.client.loop_stop()
            self.client.disconnect()
            self._running = False
            self._connected.clear()
            logger.info("✅ MQTT Control Plane disconnected")

    def is_connected(self) -> bool:
        return self._connected.is_set()

    def publish_status(self, status: str, data: Optional[Dict[str, Any]] = None) -> None:
        """
        Publish status update to status topic (QoS 1, retained).

        Args:
            status: Status string (e.g., "running", "ok", "error")
            data: Extra fields merged into the message
        """
        message = {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "client_id": self.client_id,
        }
        if data:
            message.update(data)

        try:
            payload = json.dumps(message, default=str)
        except (TypeError, ValueError) as e:
            logger.error(f"❌ Status not serializable: {e}")
            return

        result = self.client.publish(self.status_topic, payload, qos=1, retain=True)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"⚠️ Status publish failed (rc={result.rc})")
        else:
            logger.debug(f"📤 Status published: {status}")

    def handle_command(self, command_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute one decoded command and build its reply.

        Domain and validation errors become {"status": "error"} replies;
        anything else propagates to the caller.
        """
        command = str(command_data.get('command', '')).lower()
        reply: Dict[str, Any] = {"command": command}
        if 'request_id' in command_data:
            reply["request_id"] = command_data['request_id']

        if not command:
            logger.warning("⚠️ Empty command received")
            reply.update(status="error", error="empty command")
            return reply

        logger.info(f"🎯 Executing command: {command}")
        try:
            result = self.command_registry.execute(command, command_data)
        except CommandNotAvailableError as e:
            logger.warning(f"⚠️ {e}")
            reply.update(status="error", error=str(e))
            return reply
        except (TrackingError, CommandValidationError, LookupError, ValueError) as e:
            logger.warning(f"⚠️ Command '{command}' failed: {e}")
            reply.update(status="error", error=str(e), error_type=type(e).__name__)
            return reply

        logger.debug(f"✅ Command '{command}' executed successfully")
        reply.update(status="ok")
        if result is not None:
            reply["data"] = result
        return reply

    # ===== MQTT Callbacks (run in MQTT thread) =====

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if not reason_code.is_failure:
            logger.info(f"✅ Connected to broker ({reason_code})")
            client.subscribe(self.command_topic, qos=1)
            logger.info(f"📥 Subscribed to: {self.command_topic} (QoS 1)")
            self.publish_status("connected")
            self._connected.set()
        else:
            logger.error(f"❌ Connection failed ({reason_code})")
            self._connected.clear()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        if reason_code.is_failure:
            logger.warning(f"⚠️ Unexpected disconnection ({reason_code})")
        else:
            logger.info("✅ Disconnected from broker")
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        try:
            payload = msg.payload.decode('utf-8')
            logger.debug(f"📦 Command received: {payload}")
            command_data = json.loads(payload)
            if not isinstance(command_data, dict):
                logger.warning("⚠️ Command payload is not a JSON object")
                return

            reply = self.handle_command(command_data)
            self.publish_status(reply.pop("status"), reply)

        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"❌ Error decoding JSON: {msg.payload!r} ({e})")
        except Exception as e:
            logger.error(f"❌ Error processing message: {e}", exc_info=True)
