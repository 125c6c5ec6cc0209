"""
robofleet/transport.py — broadcast channels for config synchronization.

Every coordinator of one logical system publishes to and receives from the
same broadcast channel.  Two implementations:

* :class:`LocalBus` — in-process hub; each coordinator attaches a
  :class:`LocalChannel`.  Used for single-host setups and tests.
* :class:`MQTTBus` — one MQTT topic per logical system (paho-mqtt).

Config example::

    sync:
      transport: mqtt
      broker_host: mqtt.example.com
      broker_port: 1883
      topic: robofleet/sync

Install::

    pip install paho-mqtt
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

logger = logging.getLogger("RoboFleet.Transport")

try:
    import paho.mqtt.client as _mqtt_client

    HAS_PAHO = True
except ImportError:
    HAS_PAHO = False

MessageCallback = Callable[[str], None]


class BroadcastChannel(ABC):
    """Publish text messages to every member of the channel, self included."""

    def __init__(self) -> None:
        self._callback: Optional[MessageCallback] = None

    def subscribe(self, callback: MessageCallback) -> None:
        self._callback = callback

    def deliver(self, data: str) -> None:
        """Hand an inbound message to the subscriber."""
        if self._callback is None:
            return
        try:
            self._callback(data)
        except Exception as exc:
            logger.error("Sync message handler error: %s", exc)

    def start(self) -> None:
        """Connect. No-op for channels without a connection."""

    def stop(self) -> None:
        """Disconnect. No-op for channels without a connection."""

    @abstractmethod
    def publish(self, data: str) -> None: ...


class LocalBus:
    """In-process broadcast hub."""

    def __init__(self) -> None:
        self._members: List[LocalChannel] = []
        self._lock = threading.Lock()
        self.published: List[str] = []

    def channel(self) -> LocalChannel:
        ch = LocalChannel(self)
        with self._lock:
            self._members.append(ch)
        return ch

    def detach(self, channel: LocalChannel) -> None:
        with self._lock:
            if channel in self._members:
                self._members.remove(channel)

    def broadcast(self, data: str) -> None:
        with self._lock:
            members = list(self._members)
            self.published.append(data)
        for member in members:
            member.deliver(data)


class LocalChannel(BroadcastChannel):
    def __init__(self, bus: LocalBus) -> None:
        super().__init__()
        self._bus = bus

    def publish(self, data: str) -> None:
        self._bus.broadcast(data)

    def stop(self) -> None:
        self._bus.detach(self)


class MQTTBus(BroadcastChannel):
    """Broadcast channel over a single MQTT topic.

    Config keys: ``broker_host`` (default: localhost), ``broker_port``
    (1883), ``topic`` (robofleet/sync), ``username``/``password`` (or env
    ``MQTT_USERNAME``/``MQTT_PASSWORD``), ``client_id``, ``keepalive`` (60),
    ``qos`` (1), ``tls`` (false).
    """

    def __init__(self, config: Optional[dict] = None) -> None:
        super().__init__()
        config = config or {}
        self._broker_host = config.get("broker_host", os.getenv("MQTT_BROKER_HOST", "localhost"))
        self._broker_port = int(config.get("broker_port", os.getenv("MQTT_BROKER_PORT", "1883")))
        self._topic = config.get("topic", "robofleet/sync")
        self._username = config.get("username", os.getenv("MQTT_USERNAME", ""))
        self._password = config.get("password", os.getenv("MQTT_PASSWORD", ""))
        self._keepalive = int(config.get("keepalive", 60))
        self._qos = int(config.get("qos", 1))
        self._tls = bool(config.get("tls", False))
        self._client_id = config.get("client_id", f"robofleet-{os.getpid()}")
        self._client = None
        self._connected = threading.Event()

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        if not HAS_PAHO:
            raise ImportError("paho-mqtt is not installed. Install with: pip install paho-mqtt")

        self._client = _mqtt_client.Client(
            _mqtt_client.CallbackAPIVersion.VERSION2, client_id=self._client_id
        )
        if self._username:
            self._client.username_pw_set(self._username, self._password)
        if self._tls:
            self._client.tls_set()

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        self._client.connect(self._broker_host, self._broker_port, self._keepalive)
        # paho's network loop runs in its own daemon thread
        self._client.loop_start()

        if not self._connected.wait(10.0):
            raise ConnectionError(
                f"MQTT: Could not connect to {self._broker_host}:{self._broker_port} within 10 s"
            )
        logger.info(
            "Sync bus connected to %s:%d (topic=%r)",
            self._broker_host,
            self._broker_port,
            self._topic,
        )

    def stop(self) -> None:
        if self._client:
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None
        self._connected.clear()
        logger.info("Sync bus disconnected")

    def publish(self, data: str) -> None:
        if self._client is None or not self._connected.is_set():
            logger.warning("Sync bus not connected -- message dropped")
            return
        self._client.publish(self._topic, data.encode("utf-8"), qos=self._qos)

    # ── MQTT callbacks (execute in paho's internal thread) ────────────────────

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if not reason_code.is_failure:
            client.subscribe(self._topic, qos=self._qos)
            self._connected.set()
            logger.debug("MQTT connected, subscribed to %r", self._topic)
        else:
            logger.error("MQTT connect failed: %s", reason_code)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.warning("MQTT unexpected disconnect (%s), will auto-reconnect", reason_code)
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Dropping non-UTF-8 sync message on %r", msg.topic)
            return
        self.deliver(payload)


def create_channel(config: Optional[dict] = None, bus: Optional[LocalBus] = None) -> BroadcastChannel:
    """Build the broadcast channel selected by ``config["transport"]``."""
    config = config or {}
    transport = config.get("transport", "local").lower()
    if transport == "mqtt":
        return MQTTBus(config)
    if transport == "local":
        return (bus or LocalBus()).channel()
    raise ValueError(f"Unknown sync transport: {transport!r}")
