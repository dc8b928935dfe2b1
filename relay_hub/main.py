#!/usr/bin/env python3
"""
Relay Hub - Main Entry Point

This server pairs producer and display endpoints and:
- Relays binary frames from each pair's producer to its display
- Enforces one occupant per (pair, role) slot
- Reaps connections that stop answering liveness probes
- Optionally mirrors pair status to MQTT

Environment Variables:
    HOST: Bind address (default: 0.0.0.0)
    PORT: Listen port (default: 3000)
    HEARTBEAT_INTERVAL: Seconds between liveness sweeps (default: 30)
    PAIRS: Comma separated pair ids (default: 1,2)
    DROP_ROUTES: Drop routing table, e.g. 1:2,2:1 (default: swap for two pairs)
    MQTT_ENABLED: Mirror pair status to MQTT (default: false)
    MQTT_HOST: MQTT broker host (default: localhost)
    MQTT_PORT: MQTT broker port (default: 1883)
    MQTT_TOPIC: Status topic prefix (default: relay/status)

Usage:
    python -m relay_hub.main
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Dict, Optional, Tuple

import uvicorn

from .hub import RelayHub, default_drop_routes, parse_drop_routes
from .mqtt_bridge import AsyncMQTTStatusBridge
from .registry import DEFAULT_PAIRS, PairRegistry, PairStatus
from .ws_server import RelayServer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class HubGateway:
    """
    Main hub integrating the relay server and the MQTT status mirror.

    Architecture:
        Producer -> WebSocket -> RelayHub -> WebSocket -> Display
                                    |
                                    +-> MQTT (relay/status/<pair>)
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 3000,
        heartbeat_interval: float = 30.0,
        pairs: Tuple[int, ...] = DEFAULT_PAIRS,
        drop_routes: Optional[Dict[int, int]] = None,
        mqtt_host: str = "localhost",
        mqtt_port: int = 1883,
        mqtt_topic: str = "relay/status",
        enable_mqtt: bool = False,
    ):
        """
        Initialize hub gateway.

        Args:
            host: Server bind address
            port: Server port
            heartbeat_interval: Seconds between liveness sweeps
            pairs: Pair ids served
            drop_routes: Drop routing table (None for the default swap)
            mqtt_host: MQTT broker host
            mqtt_port: MQTT broker port
            mqtt_topic: MQTT status topic prefix
            enable_mqtt: Whether to mirror status to MQTT
        """
        self.host = host
        self.port = port
        self.heartbeat_interval = heartbeat_interval
        self.mqtt_host = mqtt_host
        self.mqtt_port = mqtt_port
        self.mqtt_topic = mqtt_topic
        self.enable_mqtt = enable_mqtt

        # Components
        self.hub = RelayHub(
            registry=PairRegistry(pairs),
            drop_routes=drop_routes,
            on_status=self._on_status,
        )
        self.server = RelayServer(hub=self.hub, heartbeat_interval=heartbeat_interval)
        self.mqtt_bridge: Optional[AsyncMQTTStatusBridge] = None

    async def start(self) -> None:
        """Start auxiliary components."""
        logger.info("Starting Relay Hub...")

        if self.enable_mqtt:
            try:
                self.mqtt_bridge = AsyncMQTTStatusBridge(
                    host=self.mqtt_host,
                    port=self.mqtt_port,
                    topic=self.mqtt_topic,
                )
                success = await self.mqtt_bridge.start()
                if success:
                    logger.info("MQTT status bridge started")
                else:
                    logger.warning("MQTT status bridge failed to connect")
            except Exception as e:
                logger.error(f"Failed to start MQTT bridge: {e}")
                logger.warning("Continuing without MQTT bridge")
                self.mqtt_bridge = None

        logger.info(f"Relay Hub serving pairs {list(self.hub.registry.pairs)} on {self.host}:{self.port}")
        logger.info(f"  -> WebSocket: ws://{self.host}:{self.port}/ws")

    async def stop(self) -> None:
        """Stop auxiliary components."""
        logger.info("Stopping Relay Hub...")
        if self.mqtt_bridge:
            await self.mqtt_bridge.stop()
            logger.info("MQTT status bridge stopped")
        logger.info("Relay Hub stopped")

    def _on_status(self, status: PairStatus) -> None:
        if self.mqtt_bridge and self.mqtt_bridge.connected:
            self.mqtt_bridge.publish_status(status)

    def get_app(self):
        """Get the FastAPI application for uvicorn."""
        return self.server.app

    def get_stats(self) -> dict:
        return {
            "relay": self.server.get_stats(),
            "mqtt_bridge": self.mqtt_bridge.get_stats() if self.mqtt_bridge else {},
        }


def parse_pairs(value: str) -> Tuple[int, ...]:
    """Parse a comma separated pair list like "1,2"."""
    return tuple(int(p) for p in value.split(",") if p.strip())


def env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


async def run_server(gateway: HubGateway) -> None:
    """Run the server with uvicorn."""
    config = uvicorn.Config(
        gateway.get_app(),
        host=gateway.host,
        port=gateway.port,
        log_level="info",
        access_log=True,
        # The liveness monitor does the probing
        ws_ping_interval=None,
    )
    server = uvicorn.Server(config)
    await server.serve()


async def main_async() -> None:
    """Async main entry point."""
    # Load configuration from environment
    try:
        host = os.environ.get("HOST", "0.0.0.0")
        port = int(os.environ.get("PORT", "3000"))
        heartbeat_interval = float(os.environ.get("HEARTBEAT_INTERVAL", "30"))
        pairs = parse_pairs(os.environ.get("PAIRS", "1,2"))
        routes_env = os.environ.get("DROP_ROUTES")
        drop_routes = parse_drop_routes(routes_env) if routes_env else default_drop_routes(pairs)
        mqtt_port = int(os.environ.get("MQTT_PORT", "1883"))
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    if len(pairs) > 2 and not routes_env:
        logger.warning("More than two pairs and no DROP_ROUTES set; drop messages will be rejected")

    try:
        gateway = HubGateway(
            host=host,
            port=port,
            heartbeat_interval=heartbeat_interval,
            pairs=pairs,
            drop_routes=drop_routes,
            mqtt_host=os.environ.get("MQTT_HOST", "localhost"),
            mqtt_port=mqtt_port,
            mqtt_topic=os.environ.get("MQTT_TOPIC", "relay/status"),
            enable_mqtt=env_flag("MQTT_ENABLED"),
        )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await gateway.start()

        # Run server until shutdown
        server_task = asyncio.create_task(run_server(gateway))
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        done, pending = await asyncio.wait(
            [server_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        # Cancel pending tasks
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error(f"Server error: {e}")
    finally:
        await gateway.stop()


def main() -> None:
    """Main entry point."""
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
