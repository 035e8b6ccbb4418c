"""
MQTT Subscriber
==============

Bounded Context: Message Consumption

Subscriber receiving participant GPS pings from the MQTT broker.

Design:
- Thread-safe message consumption
- Callback-based architecture (async message handling)
- Automatic deserialization with error handling
- Wildcard topics supported (e.g. runtrack/pings/#)

Architecture:
    Device → MQTT Broker → PingSubscriber → on_ping → TrackingService

Message Flow:
    1. Subscriber receives JSON from MQTT
    2. Deserializes to PingMessage
    3. Invokes user callback with typed message
    4. Continues listening (non-blocking)

Example:
    >>> from runtrack_mqtt import PingSubscriber, create_logger
    >>>
    >>> def on_ping(msg):
    ...     service.ingest_ping(msg.participant_id, msg.course_id, ...)
    >>>
    >>> subscriber = PingSubscriber(
    ...     broker_host="localhost",
    ...     ping_topic="runtrack/pings/#",
    ...     on_ping=on_ping,
    ...     logger=create_logger("tracking"),
    ... )
    >>> subscriber.connect()
    >>> subscriber.start()
    >>> # ...
    >>> subscriber.stop()
"""

import json
import threading
from typing import Any, Callable, Dict, Optional
import paho.mqtt.client as mqtt

from .schemas import PingMessage
from .logging import StructuredLogger, LogEvent


class PingSubscriber:
    """
    MQTT subscriber for participant pings.

    Attributes:
        broker_host: MQTT broker hostname
        broker_port: MQTT broker port
        ping_topic: Topic filter for pings (wildcards allowed)
        client_id: MQTT client identifier
        logger: Structured logger instance
        on_ping: Callback for each valid PingMessage

    Thread Safety:
        Callbacks are invoked in the MQTT network thread.
    """

    def __init__(
        self,
        broker_host: str,
        ping_topic: str,
        on_ping: Callable[[PingMessage], Any],
        logger: StructuredLogger,
        broker_port: int = 1883,
        client_id: str = "runtrack_ping_subscriber",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.ping_topic = ping_topic
        self.client_id = client_id
        self.logger = logger
        self.qos = qos
        self.on_ping = on_ping

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        if username and password:
            self.client.username_pw_set(username, password)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        self._connected = threading.Event()
        self._running = False
        self._stats_lock = threading.Lock()
        self._message_count = {'received': 0, 'invalid': 0}

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        """Subscribe on every (re)connect."""
        if not reason_code.is_failure:
            self._connected.set()
            client.subscribe(self.ping_topic, qos=self.qos)
            self.logger.info(
                event=LogEvent.MQTT_CONNECTED,
                message="Connected to MQTT broker and subscribed to pings",
                metadata={
                    'broker': f"{self.broker_host}:{self.broker_port}",
                    'ping_topic': self.ping_topic,
                }
            )
        else:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Failed to connect to broker ({reason_code})",
                metadata={'broker': f"{self.broker_host}:{self.broker_port}"}
            )

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        self._connected.clear()
        self.logger.warning(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Disconnected from MQTT broker",
            metadata={
                'broker': f"{self.broker_host}:{self.broker_port}",
                'reason_code': str(reason_code)
            }
        )

    def _on_message(self, client, userdata, msg: mqtt.MQTTMessage) -> None:
        """Decode JSON and route by topic."""
        try:
            data = json.loads(msg.payload.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            with self._stats_lock:
                self._message_count['invalid'] += 1
            self.logger.error(
                event=LogEvent.DESERIALIZATION_ERROR,
                message="Failed to decode JSON message",
                exc_info=e,
                metadata={'topic': msg.topic}
            )
            return

        if not mqtt.topic_matches_sub(self.ping_topic, msg.topic):
            self.logger.warning(
                event=LogEvent.DESERIALIZATION_ERROR,
                message=f"Received message from unknown topic: {msg.topic}"
            )
            return

        try:
            self._handle_ping_message(data)
        except Exception as e:
            # Keep the network thread alive
            self.logger.error(
                event=LogEvent.TRACKING_ERROR,
                message="Error processing ping",
                exc_info=e,
                metadata={'topic': msg.topic}
            )

    def _handle_ping_message(self, data: Dict[str, Any]) -> Optional[PingMessage]:
        """
        Deserialize a ping and hand it to the callback.

        Returns:
            The PingMessage, or None if the payload failed validation
        """
        if not isinstance(data, dict):
            data = {'payload': data}
        try:
            ping_msg = PingMessage.from_dict(data)
        except ValueError as e:
            with self._stats_lock:
                self._message_count['invalid'] += 1
            self.logger.error(
                event=LogEvent.SCHEMA_VALIDATION_ERROR,
                message="Ping message failed schema validation",
                exc_info=e,
                metadata={'data': data}
            )
            return None

        with self._stats_lock:
            self._message_count['received'] += 1

        self.logger.debug(
            event=LogEvent.PING_RECEIVED,
            message="Received ping",
            metadata={
                'participant_id': ping_msg.participant_id,
                'course_id': ping_msg.course_id,
                'timestamp': ping_msg.timestamp,
            }
        )

        self.on_ping(ping_msg)
        return ping_msg

    def connect(self, timeout: float = 10.0) -> bool:
        """
        Connect to MQTT broker and start the network loop.

        Returns:
            True if connected successfully, False otherwise
        """
        try:
            self.client.connect(self.broker_host, self.broker_port)
            self.client.loop_start()
            if self._connected.wait(timeout=timeout):
                return True
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Connection timeout",
                metadata={'timeout': timeout}
            )
            return False
        except (OSError, ValueError) as e:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Failed to connect to broker",
                exc_info=e,
                metadata={'broker': f"{self.broker_host}:{self.broker_port}"}
            )
            return False

    def start(self) -> None:
        """Mark the subscriber as listening (callbacks run in the MQTT thread)."""
        if not self._connected.is_set():
            self.logger.warning(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Cannot start: not connected to broker"
            )
            return

        self._running = True
        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message="Subscriber started (listening for pings)",
            metadata={'ping_topic': self.ping_topic}
        )

    def stop(self) -> None:
        """Stop the network loop and disconnect."""
        self._running = False
        self.client.loop_stop()
        self.client.disconnect()
        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Subscriber stopped",
            metadata=self.get_stats()
        )

    def is_connected(self) -> bool:
        return self._connected.is_set()

    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, Any]:
        """Message counts and connection status."""
        with self._stats_lock:
            return {
                'pings_received': self._message_count['received'],
                'pings_invalid': self._message_count['invalid'],
                'connected': self._connected.is_set(),
                'running': self._running,
                'ping_topic': self.ping_topic,
                'broker': f"{self.broker_host}:{self.broker_port}"
            }
