"""Receptor MQTT principal.

Usa paho-mqtt para recibir lecturas de un único topic y las persiste a
través de ReadingProcessor. Delivery is fire-and-forget from the pipeline's
point of view: whatever QoS the broker honours, a message that fails to
decode, validate or insert is logged and dropped.

The subscription is (re)issued from on_connect, so every automatic reconnect
of the paho network loop restores it.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import paho.mqtt.client as mqtt

from common.config import Settings

from ..infrastructure.persistence import ReadingStorage
from .async_processor import AsyncReadingProcessor
from .processor import ProcessOutcome, ReadingProcessor

logger = logging.getLogger(__name__)


class ReceiverStats:
    """Estadísticas del receptor MQTT."""

    def __init__(self):
        self.received = 0
        self.processed = 0
        self.rejected = 0
        self.failed = 0
        self.unknown_topic = 0
        self.last_message_at: float = 0
        self._lock = threading.Lock()

    def message_received(self) -> None:
        with self._lock:
            self.received += 1
            self.last_message_at = time.time()

    def topic_ignored(self) -> None:
        with self._lock:
            self.unknown_topic += 1

    def record(self, outcome: ProcessOutcome) -> None:
        with self._lock:
            if outcome is ProcessOutcome.STORED:
                self.processed += 1
            elif outcome is ProcessOutcome.REJECTED:
                self.rejected += 1
            else:
                self.failed += 1
            processed = self.processed
        if outcome is ProcessOutcome.STORED and processed % 100 == 0:
            logger.info("[MQTT] %s", self)

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} processed={self.processed} "
            f"rejected={self.rejected} failed={self.failed} unknown_topic={self.unknown_topic}"
        )

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "received": self.received,
                "processed": self.processed,
                "rejected": self.rejected,
                "failed": self.failed,
                "unknown_topic": self.unknown_topic,
                "last_message_at": self.last_message_at,
            }


class MQTTReceiver:
    """Receptor MQTT que persiste lecturas de dispositivos."""

    def __init__(
        self,
        storage: ReadingStorage,
        topic: str,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "telemetry-receiver",
        qos: int = 1,
        async_processing: bool = True,
        queue_size: int = 1000,
        num_workers: int = 4,
    ):
        self.topic = topic
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.username = username
        self.password = password
        self.client_id = f"{client_id}-{int(time.time())}"
        self.qos = qos

        self._client: Optional[mqtt.Client] = None
        self._running = False
        self._connected = threading.Event()

        self._stats = ReceiverStats()
        self._processor = ReadingProcessor(storage)
        self._async: Optional[AsyncReadingProcessor] = None
        if async_processing:
            self._async = AsyncReadingProcessor(
                self._processor,
                max_queue_size=queue_size,
                num_workers=num_workers,
                on_outcome=self._stats.record,
            )

    @classmethod
    def from_settings(cls, storage: ReadingStorage, settings: Settings) -> "MQTTReceiver":
        return cls(
            storage=storage,
            topic=settings.mqtt_topic,
            broker_host=settings.mqtt_broker_host,
            broker_port=settings.mqtt_broker_port,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            client_id=settings.mqtt_client_id,
            qos=settings.mqtt_qos,
            async_processing=settings.mqtt_async_processing,
            queue_size=settings.mqtt_queue_size,
            num_workers=settings.mqtt_num_workers,
        )

    def start(self, connect_timeout: float = 5.0) -> bool:
        """Inicia el receptor MQTT.

        Returns True once connected. On timeout the network loop keeps
        retrying in the background and False is returned.
        """
        if self._running:
            return self.is_connected

        if self._async is not None:
            self._async.start()

        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            protocol=mqtt.MQTTv311,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.reconnect_delay_set(min_delay=1, max_delay=30)

        if self.username and self.password:
            self._client.username_pw_set(self.username, self.password)

        logger.info("[MQTT] Connecting to %s:%d", self.broker_host, self.broker_port)
        self._client.connect_async(self.broker_host, self.broker_port, keepalive=60)
        self._client.loop_start()
        self._running = True

        if self._connected.wait(timeout=connect_timeout):
            logger.info("[MQTT] Started successfully")
            return True
        logger.error("[MQTT] Connection timeout, retrying in background")
        return False

    def stop(self) -> None:
        """Detiene el receptor."""
        if self._client is not None:
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None

        if self._async is not None and self._async.is_running:
            self._async.stop(drain=True)

        self._running = False
        self._connected.clear()
        logger.info("[MQTT] Stopped. %s", self._stats)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback de conexión."""
        if reason_code == 0:
            self._connected.set()
            logger.info("[MQTT] Connected to broker")
            client.subscribe(self.topic, qos=self.qos)
            logger.info("[MQTT] Subscribed to %s", self.topic)
        else:
            self._connected.clear()
            logger.error("[MQTT] Connection failed: %s", reason_code)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """Callback de desconexión."""
        self._connected.clear()
        logger.warning("[MQTT] Connection lost: %s", reason_code)

    def _on_message(self, client, userdata, msg):
        """Callback de mensaje recibido."""
        self._stats.message_received()

        if not mqtt.topic_matches_sub(self.topic, msg.topic):
            self._stats.topic_ignored()
            logger.warning("[MQTT] Unknown topic: %s", msg.topic)
            return

        if self._async is not None:
            if not self._async.enqueue(msg.payload):
                self._stats.record(ProcessOutcome.FAILED)
            return

        self._stats.record(self._processor.process(msg.payload))

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    @property
    def stats(self) -> dict:
        stats = {
            "running": self._running,
            "connected": self.is_connected,
            "broker": f"{self.broker_host}:{self.broker_port}",
            "topic": self.topic,
            **self._stats.to_dict(),
        }
        if self._async is not None:
            stats["async"] = self._async.metrics
        return stats

    def health_check(self) -> dict:
        return {
            "healthy": self._running and self.is_connected,
            "running": self._running,
            "connected": self.is_connected,
            "messages_processed": self._stats.processed,
            "messages_failed": self._stats.failed,
        }
