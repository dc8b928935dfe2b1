"""
MQTT Bridge for pair status.

Handles:
- Publishing every pair status change to <topic>/<pair> (retained)
- Clearing retained status on shutdown
"""

import asyncio
import json
import logging
import time
from typing import Optional

import paho.mqtt.client as mqtt

from .registry import PairStatus

logger = logging.getLogger(__name__)


class MQTTStatusBridge:
    """
    MQTT mirror of pair occupancy.

    Lets dashboards or devices that already speak MQTT watch which slots
    are filled without opening a relay socket.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 1883,
        topic: str = "relay/status",
        client_factory=None,
        flush_timeout: float = 2.0,
    ):
        """
        Initialize MQTT bridge.

        Args:
            host: MQTT broker host
            port: MQTT broker port
            topic: Topic prefix; the pair id is appended
            client_factory: Callable returning an MQTT client (for tests)
            flush_timeout: Seconds to wait for retained clears on stop
        """
        self.host = host
        self.port = port
        self.topic = topic.rstrip("/")
        self._client_factory = client_factory or self._default_client
        self.flush_timeout = flush_timeout

        # MQTT client
        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._running = False
        self._published_pairs = set()

        # Statistics
        self._messages_sent = 0
        self._last_send_time: Optional[float] = None

    @staticmethod
    def _default_client(client_id: str):
        return mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)

    def start(self) -> bool:
        """
        Start the MQTT bridge.

        Returns:
            True if connection successful, False otherwise
        """
        if self._running:
            return True

        try:
            client_id = f"relay_hub_{int(time.time())}"
            self._client = self._client_factory(client_id)

            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect

            logger.info(f"Connecting to MQTT broker at {self.host}:{self.port}")
            self._client.connect(self.host, self.port, keepalive=60)

            # Network loop runs in paho's own thread
            self._running = True
            self._client.loop_start()

            for _ in range(50):  # 5 second timeout
                if self._connected:
                    break
                time.sleep(0.1)

            if not self._connected:
                logger.warning("MQTT connection timeout - continuing without MQTT")
                return False

            return True

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    def stop(self) -> None:
        """Stop the MQTT bridge, clearing retained status."""
        if not self._running:
            return

        self._running = False

        if self._connected and self._client:
            pending = [
                self._client.publish(self._topic_for(pair), b"", qos=0, retain=True)
                for pair in sorted(self._published_pairs)
            ]
            # Let the network loop flush the clears before it is stopped
            for info in pending:
                try:
                    info.wait_for_publish(timeout=self.flush_timeout)
                    if not info.is_published():
                        logger.warning("Retained status clear not confirmed before stop")
                except (RuntimeError, ValueError) as e:
                    logger.warning(f"Retained status clear not sent: {e}")

        if self._client:
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None

        self._connected = False
        logger.info("MQTT bridge stopped")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """MQTT connection callback."""
        if reason_code == 0:
            self._connected = True
            logger.info("Connected to MQTT broker")
        else:
            logger.error(f"MQTT connection failed with code: {reason_code}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        """MQTT disconnection callback."""
        self._connected = False
        if reason_code != 0:
            logger.warning(f"Unexpected MQTT disconnection, code: {reason_code}")
        else:
            logger.info("Disconnected from MQTT broker")

    def _topic_for(self, pair: int) -> str:
        return f"{self.topic}/{pair}"

    def publish_status(self, status: PairStatus) -> bool:
        """
        Publish one pair's occupancy.

        Returns:
            True if published successfully
        """
        if not self._connected or not self._client:
            return False

        payload = {
            "pair": status.pair,
            "producer_present": status.producer_present,
            "display_present": status.display_present,
            "ts": int(time.time() * 1000),
        }

        try:
            self._client.publish(
                self._topic_for(status.pair),
                json.dumps(payload),
                qos=0,
                retain=True,
            )
            self._published_pairs.add(status.pair)
            self._messages_sent += 1
            self._last_send_time = time.time()

            logger.debug(f"Published pair status: {payload}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish pair status: {e}")
            return False

    @property
    def connected(self) -> bool:
        """Check if connected to MQTT broker."""
        return self._connected

    def get_stats(self) -> dict:
        """Get bridge statistics."""
        return {
            "connected": self._connected,
            "messages_sent": self._messages_sent,
            "last_send_time": self._last_send_time,
        }


class AsyncMQTTStatusBridge:
    """
    Async wrapper for MQTTStatusBridge.

    Blocking calls run in the default executor so the hub's loop never waits
    on the broker.
    """

    def __init__(self, **kwargs):
        """Initialize with same arguments as MQTTStatusBridge."""
        self._bridge = MQTTStatusBridge(**kwargs)

    async def start(self) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._bridge.start)

    async def stop(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._bridge.stop)

    def publish_status(self, status: PairStatus) -> None:
        """Schedule a status publish without blocking the caller."""
        if not self._bridge.connected:
            return
        loop = asyncio.get_running_loop()
        loop.run_in_executor(None, self._bridge.publish_status, status)

    @property
    def connected(self) -> bool:
        return self._bridge.connected

    def get_stats(self) -> dict:
        return self._bridge.get_stats()
