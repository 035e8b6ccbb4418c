"""
MQTT client wrapper for talking to the tracking service.

Handles MQTT connection, command publishing, reply correlation and test pings.
"""

import json
import threading
import uuid
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt


class MQTTCommandClient:
    """
    MQTT client for sending commands and pings to the tracking service.

    Commands are published with QoS 1. request() tags the command with a
    request_id and waits for the matching reply on the status topic; the
    retained status message from before the request is ignored.
    """

    def __init__(
        self,
        broker: str = "localhost",
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None
    ):
        self.broker = broker
        self.port = port
        self.username = username
        self.password = password

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)

        if username and password:
            self.client.username_pw_set(username, password)

    def _connect(self) -> None:
        try:
            self.client.connect(self.broker, self.port, keepalive=60)
        except ConnectionRefusedError:
            raise ConnectionError(
                f"Unable to connect to MQTT broker at {self.broker}:{self.port}. "
                "Is mosquitto running?"
            )

    def _publish(self, topic: str, payload: Dict[str, Any], qos: int) -> None:
        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid message data: {e}")

        result = self.client.publish(topic, encoded, qos=qos)
        result.wait_for_publish(timeout=10.0)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            raise RuntimeError(f"Publish to {topic} failed (rc={result.rc})")

    def send_command(
        self,
        topic: str,
        command: Dict[str, Any],
        qos: int = 1
    ) -> None:
        """
        Fire-and-forget command.

        Raises:
            ConnectionError: If unable to connect to MQTT broker
            ValueError: If command serialization fails
        """
        self._connect()
        self.client.loop_start()
        try:
            self._publish(topic, command, qos)
        finally:
            self.client.loop_stop()
            self.client.disconnect()

        print(f"✅ Command sent: {command.get('command', 'unknown')}")

    def request(
        self,
        command_topic: str,
        status_topic: str,
        command: Dict[str, Any],
        timeout: float = 5.0
    ) -> Dict[str, Any]:
        """
        Send a command and wait for its reply.

        Returns:
            Reply dictionary published by the control plane

        Raises:
            ConnectionError: If unable to connect to MQTT broker
            TimeoutError: If no reply arrives within timeout
        """
        request_id = uuid.uuid4().hex
        payload = dict(command, request_id=request_id)
        reply: Dict[str, Any] = {}
        received = threading.Event()
        subscribed = threading.Event()

        def on_message(client, userdata, msg):
            try:
                data = json.loads(msg.payload.decode('utf-8'))
            except (UnicodeDecodeError, json.JSONDecodeError):
                return
            if isinstance(data, dict) and data.get('request_id') == request_id:
                reply.update(data)
                received.set()

        def on_subscribe(client, userdata, mid, reason_codes, properties):
            subscribed.set()

        self.client.on_message = on_message
        self.client.on_subscribe = on_subscribe
        self._connect()
        self.client.loop_start()
        try:
            self.client.subscribe(status_topic, qos=1)
            subscribed.wait(timeout=timeout)
            self._publish(command_topic, payload, qos=1)
            if not received.wait(timeout=timeout):
                raise TimeoutError(
                    f"No reply to '{command.get('command')}' within {timeout}s"
                )
        finally:
            self.client.loop_stop()
            self.client.disconnect()
        return reply

    def send_ping(self, topic: str, ping: Dict[str, Any], qos: int = 0) -> None:
        """Publish one ping payload (see PingMessage.to_dict)."""
        self._connect()
        self.client.loop_start()
        try:
            self._publish(topic, ping, qos)
        finally:
            self.client.loop_stop()
            self.client.disconnect()
