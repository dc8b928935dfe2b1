#!/usr/bin/env python3
"""
Relay Device Client - Main Entry Point

This client runs on a display (or producer) device, keeps itself attached
to the relay hub without operator intervention, and shows the RGB565
frames relayed from its pair's producer.

Usage:
    python -m device_client.main --server ws://127.0.0.1:3000/ws --role display --pair 1 --preview
    python -m device_client.main --server ws://127.0.0.1:3000/ws --role producer --pair 1 --test-pattern
"""

import argparse
import logging
import os
import signal
import sys
import time
from typing import Optional
from urllib.parse import urlparse

from .display import FrameGate, NullDisplay, PreviewDisplay
from .frame_codec import pack_frame, solid_frame
from .message import DropEvent, DropValidator
from .network import HostNetworkLink, LogStatusLight
from .supervisor import ConnectionSupervisor, DeviceRestart
from .ws_client import WebSocketSession

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TEST_PATTERN_COLOR = (0, 200, 255)  # solid cyan


class DeviceClient:
    """
    Main client that integrates all components:
    - Network link and status lights
    - Connection supervisor (attach + session state machines)
    - Frame gate and panel driver (display role)
    - Test-pattern source (producer role)
    """

    def __init__(
        self,
        server_url: str,
        role: str = "display",
        pair: int = 1,
        width: int = 32,
        height: int = 32,
        attach_timeout: float = 20.0,
        reconnect_delay: float = 3.0,
        rate: float = 30.0,
        loop_hz: float = 100.0,
        show_preview: bool = False,
        test_pattern: bool = False,
    ):
        """
        Initialize the device client.

        Args:
            server_url: Relay WebSocket URL
            role: "producer" or "display"
            pair: Pair id to join
            width: Panel width in pixels
            height: Panel height in pixels
            attach_timeout: Seconds before a stuck network attach restarts the device
            reconnect_delay: Seconds between session attempts
            rate: Test-pattern frame rate (Hz)
            loop_hz: Main loop rate (Hz)
            show_preview: Whether to show an OpenCV preview window
            test_pattern: Send a solid test frame (producer role)
        """
        self.server_url = server_url
        self.role = role
        self.pair = pair
        self.width = width
        self.height = height
        self.rate = rate
        self.loop_interval = 1.0 / loop_hz
        self.test_pattern = test_pattern

        url = urlparse(server_url)
        if url.scheme not in ("ws", "wss") or not url.hostname:
            raise ValueError(f"Invalid server URL: {server_url}")
        port = url.port or (443 if url.scheme == "wss" else 80)

        # Components
        self.driver = PreviewDisplay() if show_preview else NullDisplay()
        self.frame_gate = FrameGate(self.driver, width=width, height=height)
        self.drop_validator = DropValidator(grid_size=min(width, height))
        self.supervisor = ConnectionSupervisor(
            network=HostNetworkLink(url.hostname, port),
            session_factory=lambda: WebSocketSession(server_url),
            role=role,
            pair=pair,
            on_frame=self.frame_gate.handle if role == "display" else None,
            on_drop=self._on_drop,
            light=LogStatusLight("Connection"),
            peer_light=LogStatusLight("Peer"),
            attach_timeout=attach_timeout,
            reconnect_delay=reconnect_delay,
        )

        # State
        self._running = False
        self._send_interval = 1.0 / rate
        self._last_send_time = 0.0
        self._test_frame = pack_frame(solid_frame(width, height, TEST_PATTERN_COLOR))

    def start(self) -> None:
        """Start the client."""
        logger.info(f"Starting Device Client ({self.role}, pair {self.pair})...")
        if self.role == "display":
            self.frame_gate.show_startup()
        self._running = True

    def stop(self) -> None:
        """Request the main loop to exit."""
        self._running = False

    def run(self) -> None:
        """Cooperative main loop: one supervisor step per iteration."""
        while self._running:
            loop_start = time.monotonic()

            self.supervisor.poll()

            if self.test_pattern and self.role == "producer":
                self._send_test_frame(loop_start)

            self.driver.pump()

            elapsed = time.monotonic() - loop_start
            if elapsed < self.loop_interval:
                time.sleep(self.loop_interval - elapsed)

    def close(self) -> None:
        """Release the session and the panel."""
        self.supervisor.shutdown()
        self.driver.close()
        logger.info("Device Client stopped")

    def _send_test_frame(self, now: float) -> None:
        if now - self._last_send_time < self._send_interval:
            return
        if self.supervisor.send_frame(self._test_frame):
            self._last_send_time = now

    def send_drop(self, event: DropEvent) -> bool:
        """
        Send a drop to the counterpart pair.

        Returns:
            True if the drop was valid and handed to the session
        """
        ok, reason = self.drop_validator.validate(event)
        if not ok:
            logger.debug(f"Drop not sent: {reason}")
            return False
        return self.supervisor.send_drop(event)

    def _on_drop(self, event: DropEvent) -> None:
        logger.info(f"Peer drop at ({event.x}, {event.y}) color={event.color}")


def restart_process() -> None:
    """Re-execute the client with the same arguments."""
    logger.warning("Restarting device client")
    os.execv(sys.executable, [sys.executable, "-m", "device_client.main"] + sys.argv[1:])


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Relay Device Client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--server",
        type=str,
        default="ws://127.0.0.1:3000/ws",
        help="Relay WebSocket URL",
    )
    parser.add_argument(
        "--role",
        choices=("producer", "display"),
        default="display",
        help="Slot role to join",
    )
    parser.add_argument(
        "--pair",
        type=int,
        default=1,
        help="Pair id to join",
    )
    parser.add_argument(
        "--width",
        type=int,
        default=32,
        help="Panel width (pixels)",
    )
    parser.add_argument(
        "--height",
        type=int,
        default=32,
        help="Panel height (pixels)",
    )
    parser.add_argument(
        "--attach-timeout",
        type=float,
        default=20.0,
        help="Network attach timeout (s) before restarting",
    )
    parser.add_argument(
        "--reconnect-delay",
        type=float,
        default=3.0,
        help="Delay (s) between session attempts",
    )
    parser.add_argument(
        "--rate",
        type=float,
        default=30.0,
        help="Test-pattern frame rate (Hz)",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Show preview window",
    )
    parser.add_argument(
        "--test-pattern",
        action="store_true",
        help="Send a solid cyan test frame (producer role)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    client: Optional[DeviceClient] = None
    restart = False
    try:
        client = DeviceClient(
            server_url=args.server,
            role=args.role,
            pair=args.pair,
            width=args.width,
            height=args.height,
            attach_timeout=args.attach_timeout,
            reconnect_delay=args.reconnect_delay,
            rate=args.rate,
            show_preview=args.preview,
            test_pattern=args.test_pattern,
        )

        def signal_handler(signum, frame):
            logger.info("Shutdown signal received")
            client.stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, signal_handler)

        client.start()
        client.run()
    except DeviceRestart as e:
        logger.error(f"Device restart requested: {e}")
        restart = True
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        if client:
            client.close()

    if restart:
        restart_process()


if __name__ == "__main__":
    main()
