"""
Device Connection Supervisor.

Two cooperative state machines, advanced by calling poll() once per
main-loop iteration:

    attach:   DETACHED -> ATTACHING -> ATTACHED -> (loss) ATTACHING
    session:  DISCONNECTED -> CONNECTING -> JOINED -> (loss) DISCONNECTED

The attach machine always runs first; the session machine only runs while
the network is attached. Nothing in poll() waits on the network: the
socket is drained with a zero timeout and reconnects are scheduled by
timestamp rather than by sleeping.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .frame_codec import FrameSizeError
from .message import DropEvent, JoinMessage, ServerMessage, pong_message
from .network import NetworkLink, StatusLight
from .ws_client import SessionError, WebSocketSession

logger = logging.getLogger(__name__)


class AttachState(str, Enum):
    DETACHED = "detached"
    ATTACHING = "attaching"
    ATTACHED = "attached"


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    JOINED = "joined"


class DeviceRestart(Exception):
    """Raised to request a full device restart."""


def _raise_restart(reason: str) -> None:
    raise DeviceRestart(reason)


@dataclass
class SupervisorStats:
    """Counters across the supervisor's lifetime."""
    attaches: int = 0
    network_losses: int = 0
    session_opens: int = 0
    session_failures: int = 0
    reconnect_attempts: int = 0
    joins: int = 0
    rejections: int = 0
    frames_received: int = 0
    frames_discarded: int = 0


class ConnectionSupervisor:
    """
    Keeps one endpoint attached to the relay hub.

    Features:
    - Attach timeout escalates to a full restart
    - Fixed reconnect delay (optionally growing up to a cap)
    - Three consecutive kicked/error replies without a joined drop the session
    - Status light solid while attaching, on while joined
    """

    MAX_REJECTIONS = 3

    def __init__(
        self,
        network: NetworkLink,
        session_factory: Callable[[], WebSocketSession],
        role: str,
        pair: int,
        on_frame: Optional[Callable[[bytes], Any]] = None,
        on_status: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_drop: Optional[Callable[[DropEvent], None]] = None,
        light: Optional[StatusLight] = None,
        peer_light: Optional[StatusLight] = None,
        attach_timeout: float = 20.0,
        reconnect_delay: float = 3.0,
        backoff_factor: float = 1.0,
        max_reconnect_delay: Optional[float] = None,
        restart: Callable[[str], None] = _raise_restart,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize supervisor.

        Args:
            network: Radio / network link
            session_factory: Creates a fresh, unopened session
            role: "producer" or "display"
            pair: Pair id to join
            on_frame: Receives binary frames while joined
            on_status: Receives status message bodies
            on_drop: Receives drop events from the peer pair
            light: Connection indicator
            peer_light: Peer-present indicator
            attach_timeout: Seconds before a stuck attach forces a restart
            reconnect_delay: Seconds between session attempts
            backoff_factor: Delay multiplier per failed attempt (1.0 = fixed)
            max_reconnect_delay: Cap for the grown delay
            restart: Called with a reason on attach timeout
            clock: Monotonic time source
        """
        if role not in ("producer", "display"):
            raise ValueError(f"Invalid role: {role}")

        self.network = network
        self.session_factory = session_factory
        self.role = role
        self.pair = pair
        self.on_frame = on_frame
        self.on_status = on_status
        self.on_drop = on_drop
        self.light = light
        self.peer_light = peer_light
        self.attach_timeout = attach_timeout
        self.initial_delay = reconnect_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_reconnect_delay if max_reconnect_delay is not None else reconnect_delay
        self.restart = restart
        self._clock = clock

        # Attach machine
        self.attach_state = AttachState.DETACHED
        self._attach_started: Optional[float] = None

        # Session machine
        self.session_state = SessionState.DISCONNECTED
        self._session: Optional[WebSocketSession] = None
        self._next_attempt_at = 0.0
        self._current_delay = reconnect_delay
        self._rejections = 0
        self.peer_present = False

        self.stats = SupervisorStats()

    @property
    def joined(self) -> bool:
        return self.session_state is SessionState.JOINED

    # ------------------------------------------------------------------
    # Main loop hook
    # ------------------------------------------------------------------

    def poll(self) -> None:
        """Advance both state machines by one step."""
        now = self._clock()
        self._poll_attach(now)
        if self.attach_state is AttachState.ATTACHED:
            self._poll_session(now)

    def shutdown(self) -> None:
        """Close the session and turn the lights off."""
        self._drop_session("shutdown", schedule_retry=False)
        self._set_light(False)

    # ------------------------------------------------------------------
    # Attach machine
    # ------------------------------------------------------------------

    def _poll_attach(self, now: float) -> None:
        if self.attach_state is AttachState.DETACHED:
            self._begin_attach(now)
            return

        if self.attach_state is AttachState.ATTACHING:
            if self.network.is_up():
                self.attach_state = AttachState.ATTACHED
                self.stats.attaches += 1
                self._set_light(False)
                self._next_attempt_at = now
                logger.info("Network attached")
            elif now - self._attach_started > self.attach_timeout:
                logger.error(f"Network attach timed out after {self.attach_timeout:.0f}s - restarting")
                self.restart("network attach timeout")
            return

        # ATTACHED: network loss takes priority over the session
        if not self.network.is_up():
            self.stats.network_losses += 1
            logger.warning("Network lost - reattaching")
            self._drop_session("network lost", schedule_retry=False)
            self._begin_attach(now)

    def _begin_attach(self, now: float) -> None:
        self.attach_state = AttachState.ATTACHING
        self._attach_started = now
        self._set_light(True)
        logger.info("Attaching to network...")
        self.network.begin()

    # ------------------------------------------------------------------
    # Session machine
    # ------------------------------------------------------------------

    def _poll_session(self, now: float) -> None:
        if self.session_state is SessionState.DISCONNECTED:
            if now >= self._next_attempt_at:
                self._open_session(now)
            return

        for message in self._session.poll():
            if isinstance(message, bytes):
                self._handle_binary(message)
            else:
                self._handle_text(message)
            if self._session is None:
                return

        if not self._session.is_open:
            self._drop_session("socket closed")

    def _open_session(self, now: float) -> None:
        session = self.session_factory()
        try:
            session.open()
        except SessionError as e:
            self.stats.session_failures += 1
            logger.warning(str(e))
            self._schedule_retry(now)
            return

        self.stats.session_opens += 1
        self._session = session
        self.session_state = SessionState.CONNECTING

        join = JoinMessage(role=self.role, pair=self.pair)
        if not session.send(join.to_json()):
            self._drop_session("join could not be sent")
            return
        logger.info(f"Sent join as {self.role}, pair {self.pair}")

    def _handle_text(self, data: str) -> None:
        try:
            msg = ServerMessage.from_json(data)
        except ValueError as e:
            logger.warning(f"Unreadable message from hub: {e}")
            return

        if msg.type == "joined":
            self._on_joined(msg)
        elif msg.type == "status":
            self._on_status(msg)
        elif msg.type == "ping":
            self._session.send(pong_message())
        elif msg.type in ("kicked", "error"):
            self._on_rejection(msg)
        elif msg.type == "drop":
            self._on_drop(msg)
        else:
            logger.debug(f"Ignoring message type {msg.type}")

    def _handle_binary(self, data: bytes) -> None:
        if self.session_state is not SessionState.JOINED:
            logger.debug("Binary frame before joined, discarding")
            return

        self.stats.frames_received += 1
        if self.on_frame is None:
            return
        try:
            if self.on_frame(data) is False:
                self.stats.frames_discarded += 1
        except FrameSizeError as e:
            self.stats.frames_discarded += 1
            logger.warning(str(e))

    def _on_joined(self, msg: ServerMessage) -> None:
        self.session_state = SessionState.JOINED
        self.stats.joins += 1
        self._rejections = 0
        self._current_delay = self.initial_delay
        self._set_light(True)
        logger.info(f"Joined as {msg.body.get('role')}, pair {msg.body.get('pair')}")

    def _on_status(self, msg: ServerMessage) -> None:
        peer_key = "display_present" if self.role == "producer" else "producer_present"
        self.peer_present = bool(msg.body.get(peer_key, False))
        if self.peer_light:
            self.peer_light.set(self.peer_present)
        if self.on_status:
            self.on_status(msg.body)

    def _on_rejection(self, msg: ServerMessage) -> None:
        self._rejections += 1
        self.stats.rejections += 1
        detail = msg.body.get("reason") or msg.body.get("message")
        logger.warning(f"Hub sent {msg.type}: {detail} ({self._rejections}/{self.MAX_REJECTIONS})")

        if self._rejections >= self.MAX_REJECTIONS:
            self._drop_session(f"{self.MAX_REJECTIONS} consecutive rejections")

    def _on_drop(self, msg: ServerMessage) -> None:
        if self.on_drop is None:
            return
        try:
            event = DropEvent.from_dict(msg.body)
        except (KeyError, TypeError, ValueError, ArithmeticError, AttributeError) as e:
            logger.warning(f"Malformed drop from hub: {e}")
            return
        self.on_drop(event)

    def _drop_session(self, reason: str, schedule_retry: bool = True) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

        if self.session_state is not SessionState.DISCONNECTED:
            logger.info(f"Session ended: {reason}")
        self.session_state = SessionState.DISCONNECTED
        self._rejections = 0

        self.peer_present = False
        if self.peer_light:
            self.peer_light.set(False)
        if self.attach_state is AttachState.ATTACHED:
            self._set_light(False)

        if schedule_retry:
            self._schedule_retry(self._clock())

    def _schedule_retry(self, now: float) -> None:
        self.stats.reconnect_attempts += 1
        self._next_attempt_at = now + self._current_delay
        logger.info(f"Reconnecting in {self._current_delay:.1f}s...")
        self._current_delay = min(self._current_delay * self.backoff_factor, self.max_delay)

    def _set_light(self, on: bool) -> None:
        if self.light:
            self.light.set(on)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def send_frame(self, data: bytes) -> bool:
        """Send a binary frame if joined. Frames are never queued."""
        if not self.joined:
            return False
        return self._session.send(data)

    def send_drop(self, event: DropEvent) -> bool:
        """Send a drop event if joined."""
        if not self.joined:
            return False
        return self._session.send(event.to_json())

    def get_stats(self) -> dict:
        """Get supervisor statistics."""
        return {
            "attach_state": self.attach_state.value,
            "session_state": self.session_state.value,
            "peer_present": self.peer_present,
            "attaches": self.stats.attaches,
            "network_losses": self.stats.network_losses,
            "session_opens": self.stats.session_opens,
            "session_failures": self.stats.session_failures,
            "reconnect_attempts": self.stats.reconnect_attempts,
            "joins": self.stats.joins,
            "rejections": self.stats.rejections,
            "frames_received": self.stats.frames_received,
            "frames_discarded": self.stats.frames_discarded,
            "session": self._session.get_stats() if self._session else {},
        }
