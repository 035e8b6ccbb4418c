"""
Tracking Publisher Base
=======================

Bounded Context: MQTT Infrastructure

Shared broker plumbing for everything the tracking service pushes out:
checkpoint crossings (QoS 1, one topic) and spectator views (retained,
one topic per course and zoom level).

Publishers are driven from the service's publisher thread, never from the
ping path, so a slow or absent broker delays delivery but never ingestion.
A publish while disconnected is counted as failed and dropped; the next
crossing or view refresh supersedes it.

    BasePublisher
        ├── CrossingEventPublisher
        └── RealtimeViewPublisher
"""

import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
import paho.mqtt.client as mqtt

from ..logging import StructuredLogger, LogEvent


class BasePublisher(ABC):
    """
    Broker connection plus JSON publishing for tracking messages.

    Subclasses turn a tracking message into a dict (format_message) and
    pick the topic and retain flag; this class owns the client, the
    connection state and delivery counters.

    Attributes:
        topic: Default topic (or topic template, see RealtimeViewPublisher)
        qos: QoS used for every publish from this instance
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int,
        topic: str,
        client_id: str,
        logger: StructuredLogger,
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 1
    ):
        if qos not in (0, 1, 2):
            raise ValueError(f"qos must be 0, 1 or 2, got {qos}")

        self.broker_host = broker_host
        self.broker_port = broker_port
        self.topic = topic
        self.client_id = client_id
        self.logger = logger
        self.qos = qos

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        self._connected = threading.Event()
        self._stats_lock = threading.Lock()
        self._published = 0
        self._failed = 0
        self._last_published_at: Optional[float] = None

    @property
    def broker(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"

    # ─────────────────────────────────────────────────────────────────────
    # paho-mqtt callbacks (network thread)
    # ─────────────────────────────────────────────────────────────────────

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Broker refused {self.client_id} ({reason_code})",
                metadata={'broker': self.broker}
            )
            return
        self._connected.set()
        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message=f"{self.client_id} ready to publish",
            metadata={'broker': self.broker, 'topic': self.topic, 'qos': self.qos}
        )

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        self._connected.clear()
        self.logger.warning(
            event=LogEvent.MQTT_DISCONNECTED,
            message=f"{self.client_id} lost the broker",
            metadata={'broker': self.broker, 'reason_code': str(reason_code)}
        )

    # ─────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────

    def connect(self, timeout: float = 10.0) -> bool:
        """
        Open the broker connection and start the network loop.

        Returns:
            True once the broker acknowledged the connection within timeout
        """
        try:
            self.client.connect(self.broker_host, self.broker_port)
        except (OSError, ValueError) as e:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Cannot reach broker for {self.client_id}",
                exc_info=e,
                metadata={'broker': self.broker}
            )
            return False

        self.client.loop_start()
        if not self._connected.wait(timeout=timeout):
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"No CONNACK for {self.client_id} after {timeout}s",
                metadata={'broker': self.broker}
            )
            return False
        return True

    def disconnect(self) -> None:
        self.client.loop_stop()
        self.client.disconnect()
        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message=f"{self.client_id} closed",
            metadata=self.get_stats()
        )

    def is_connected(self) -> bool:
        return self._connected.is_set()

    # ─────────────────────────────────────────────────────────────────────
    # Publishing
    # ─────────────────────────────────────────────────────────────────────

    @abstractmethod
    def format_message(self, *args, **kwargs) -> Dict[str, Any]:
        """Tracking message to JSON-compatible dict."""

    def publish(
        self,
        message_data: Dict[str, Any],
        retain: bool = False,
        topic: Optional[str] = None
    ) -> bool:
        """
        Send one formatted message.

        Args:
            message_data: Output of format_message()
            retain: Keep as the topic's last known value (views)
            topic: Concrete topic, defaults to self.topic

        Returns:
            True if handed to the client, False if dropped
        """
        target = topic or self.topic

        if not self._connected.is_set():
            self._record(False)
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Dropped message: broker not connected",
                metadata={'topic': target}
            )
            return False

        try:
            payload = json.dumps(message_data)
        except (TypeError, ValueError) as e:
            self._record(False)
            self.logger.error(
                event=LogEvent.SERIALIZATION_ERROR,
                message="Dropped message: not JSON serializable",
                exc_info=e,
                metadata={'topic': target}
            )
            return False

        info = self.client.publish(topic=target, payload=payload, qos=self.qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._record(False)
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message=f"Dropped message: client returned rc={info.rc}",
                metadata={'topic': target}
            )
            return False

        published = self._record(True)
        self.logger.debug(
            event=LogEvent.MQTT_PUBLISH_SUCCESS,
            message="Message handed to broker",
            metadata={'topic': target, 'retain': retain, 'published': published}
        )
        return True

    def _record(self, ok: bool) -> int:
        with self._stats_lock:
            if ok:
                self._published += 1
                self._last_published_at = time.time()
            else:
                self._failed += 1
            return self._published

    def get_stats(self) -> Dict[str, Any]:
        """Delivery counters, as reported by the status command."""
        with self._stats_lock:
            return {
                'published': self._published,
                'failed': self._failed,
                'last_published_at': self._last_published_at,
                'connected': self._connected.is_set(),
                'topic': self.topic,
                'broker': self.broker,
            }
