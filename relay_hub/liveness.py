"""
Liveness Monitor - Periodic mark-and-probe sweep.

Any connection that stays silent for a full period after being probed is
assumed dead and reaped through the hub's normal close path.

The probe is an application message, {"type": "ping"}, not a WebSocket
protocol ping (ASGI cannot send those and uvicorn's own pings are turned
off). Endpoints must answer it with {"type": "pong"}, or send any other
frame within each period. A display that only ever receives frames and
never writes back will be reaped every one to two periods.
"""

import asyncio
import logging
from typing import Optional

from .hub import RelayHub
from .protocol import ping_message

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """
    Heartbeat task running on the hub's event loop.

    Each sweep:
    1. Reaps connections whose flag is still clear from the last probe
    2. Clears the flag on the rest and sends a fresh probe
    """

    def __init__(self, hub: RelayHub, interval: float = 30.0):
        """
        Initialize monitor.

        Args:
            hub: Hub whose connections are probed
            interval: Seconds between sweeps
        """
        if interval <= 0:
            raise ValueError("Heartbeat interval must be positive")
        self.hub = hub
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._sweeps = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Liveness monitor started ({self.interval:.0f}s interval)")

    async def stop(self) -> None:
        """Cancel the sweep loop."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Liveness monitor stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Liveness sweep failed: {e}")

    def sweep(self) -> int:
        """
        Run one mark-and-probe pass.

        Returns:
            Number of connections reaped
        """
        self._sweeps += 1
        reaped = 0
        for conn in self.hub.connections:
            if not conn.is_alive:
                self.hub.reap(conn)
                reaped += 1
                continue
            conn.is_alive = False
            conn.send_json(ping_message())

        if reaped:
            logger.info(f"Liveness sweep reaped {reaped} connection(s)")
        return reaped

    def get_stats(self) -> dict:
        return {
            "running": self.running,
            "interval": self.interval,
            "sweeps": self._sweeps,
        }
