"""
WebSocket Server for the relay channel.

Handles:
- FastAPI WebSocket endpoint at /ws
- Read-only pair status at /health and counters at /stats
- Liveness monitor lifecycle (started and stopped with the app)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from .connection import Connection
from .hub import RelayHub
from .liveness import LivenessMonitor

logger = logging.getLogger(__name__)


class RelayServer:
    """
    FastAPI front end for a RelayHub.

    Each accepted socket gets a reader coroutine feeding the hub and a
    writer task owned by its Connection; whichever finishes first ends the
    session.
    """

    def __init__(
        self,
        hub: Optional[RelayHub] = None,
        heartbeat_interval: float = 30.0,
        close_timeout: float = 5.0,
    ):
        """
        Initialize relay server.

        Args:
            hub: Relay hub (a two-pair hub is created if omitted)
            heartbeat_interval: Seconds between liveness sweeps
            close_timeout: Seconds to wait for a closing transport to flush
        """
        self.hub = hub or RelayHub()
        self.monitor = LivenessMonitor(self.hub, interval=heartbeat_interval)
        self.close_timeout = close_timeout

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            self.monitor.start()
            try:
                yield
            finally:
                await self.monitor.stop()

        self.app = FastAPI(title="Pair Relay Hub", lifespan=lifespan)

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    def _setup_routes(self):
        """Set up FastAPI routes."""

        @self.app.get("/health")
        async def health_check():
            """Pair occupancy, informational only."""
            return {
                "status": "ok",
                "pairs": self.hub.get_pairs_status(),
                "connected_clients": len(self.hub.connections),
            }

        @self.app.get("/stats")
        async def stats():
            return self.get_stats()

        @self.app.websocket("/ws")
        async def websocket_relay(websocket: WebSocket):
            """WebSocket endpoint for producers and displays."""
            await self._handle_websocket(websocket)

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        """Run one connection from accept to close."""
        await websocket.accept()
        conn = self.hub.open(websocket)
        reader = asyncio.create_task(self._receive_messages(websocket, conn))

        try:
            await asyncio.wait(
                [reader, conn.writer],
                return_when=asyncio.FIRST_COMPLETED,
            )
            if reader.done() and not reader.cancelled() and reader.exception():
                logger.error(f"Error handling client {conn.conn_id}: {reader.exception()}")
        finally:
            self.hub.disconnect(conn)

            # Give the writer a chance to flush and send the close frame
            try:
                await asyncio.wait_for(asyncio.shield(conn.writer), timeout=self.close_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{conn.conn_id} did not close in time")
            finally:
                for task in (reader, conn.writer):
                    if not task.done():
                        task.cancel()
                        try:
                            await task
                        except asyncio.CancelledError:
                            pass

    async def _receive_messages(self, websocket: WebSocket, conn: Connection) -> None:
        """Feed inbound frames to the hub until the peer goes away."""
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug(f"{conn.conn_id} sent disconnect ({message.get('code')})")
                return

            data = message.get("bytes")
            if data is not None:
                self.hub.handle_binary(conn, data)
                continue

            text = message.get("text")
            if text is not None:
                self.hub.handle_text(conn, text)

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            "hub": self.hub.get_stats(),
            "liveness": self.monitor.get_stats(),
        }


def create_app(
    hub: Optional[RelayHub] = None,
    heartbeat_interval: float = 30.0,
) -> FastAPI:
    """
    Create FastAPI application with a relay server.

    Args:
        hub: Relay hub to serve
        heartbeat_interval: Seconds between liveness sweeps

    Returns:
        Configured FastAPI application
    """
    server = RelayServer(hub=hub, heartbeat_interval=heartbeat_interval)
    return server.app
