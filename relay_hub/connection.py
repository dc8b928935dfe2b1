"""
Connection - One live relay socket.

Handles:
- Process-unique identity and liveness flag
- Non-blocking outbound buffer (ordered control queue + latest-frame slot)
- Writer task that drains the buffer to the transport
- Notify-then-close ordering on shutdown
"""

import asyncio
import json
import logging
from collections import deque
from typing import Any, Deque, Optional

logger = logging.getLogger(__name__)

WS_NORMAL_CLOSURE = 1000
WS_GOING_AWAY = 1001


class Connection:
    """
    Hub-side view of a connected endpoint.

    Nothing here ever awaits on behalf of a caller: send_* and close() only
    touch the outbound buffer, and the writer task performs the actual I/O.
    A frame that is still waiting when a newer one arrives is replaced, so a
    slow reader never builds up a backlog.
    """

    def __init__(self, websocket: Any, conn_id: str, max_pending_control: int = 100):
        """
        Initialize connection.

        Args:
            websocket: Transport with async send_text/send_bytes/close
            conn_id: Process-unique identity
            max_pending_control: Control messages buffered before dropping
        """
        self.websocket = websocket
        self.conn_id = conn_id
        self.max_pending_control = max_pending_control

        # Set on any inbound traffic, cleared by the liveness monitor
        self.is_alive = True

        self._control: Deque[str] = deque()
        self._frame: Optional[bytes] = None
        self._close_code: Optional[int] = None
        self._close_reason: str = ""
        self._closing = False

        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._writer: Optional[asyncio.Task] = None

        # Statistics
        self.frames_sent = 0
        self.frames_dropped = 0
        self.control_dropped = 0

    def __repr__(self) -> str:
        return f"Connection({self.conn_id})"

    @property
    def closed(self) -> bool:
        """True once close() was requested or the transport failed."""
        return self._closing

    @property
    def has_pending_frame(self) -> bool:
        return self._frame is not None

    @property
    def writer(self) -> Optional[asyncio.Task]:
        return self._writer

    def start(self) -> asyncio.Task:
        """Start the writer task on the running loop."""
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())
        return self._writer

    def mark_alive(self) -> None:
        self.is_alive = True

    def send_json(self, payload: dict) -> bool:
        """Queue a control message. Returns False if it was dropped."""
        return self.send_text(json.dumps(payload))

    def send_text(self, text: str) -> bool:
        """Queue a raw text frame. Returns False if it was dropped."""
        if self._closing:
            return False
        if len(self._control) >= self.max_pending_control:
            self.control_dropped += 1
            logger.warning(f"{self.conn_id} control queue full, dropping message")
            return False
        self._control.append(text)
        self._notify()
        return True

    def send_frame(self, data: bytes) -> bool:
        """
        Offer a binary frame.

        Replaces any frame not yet written. Returns False if the
        connection is closing.
        """
        if self._closing:
            return False
        if self._frame is not None:
            self.frames_dropped += 1
        self._frame = data
        self._notify()
        return True

    def close(self, code: int = WS_NORMAL_CLOSURE, reason: str = "") -> None:
        """
        Request transport close.

        Control messages already queued are written first; a pending frame
        is discarded. Calling close() more than once has no effect.
        """
        if self._closing:
            return
        self._closing = True
        self._close_code = code
        self._close_reason = reason
        self._frame = None
        self._notify()

    async def drain(self) -> None:
        """Wait until everything queued so far has been written."""
        await self._idle.wait()

    def _notify(self) -> None:
        self._idle.clear()
        self._wakeup.set()

    async def _write_loop(self) -> None:
        """Drain the outbound buffer to the transport."""
        try:
            while True:
                await self._wakeup.wait()
                self._wakeup.clear()

                while self._control:
                    await self.websocket.send_text(self._control.popleft())

                if self._frame is not None:
                    data, self._frame = self._frame, None
                    await self.websocket.send_bytes(data)
                    self.frames_sent += 1

                if self._close_code is not None and not self._control:
                    await self.websocket.close(code=self._close_code, reason=self._close_reason)
                    logger.debug(f"{self.conn_id} transport closed ({self._close_code})")
                    return

                if not self._control and self._frame is None:
                    self._idle.set()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Transport errors count as a close
            logger.debug(f"{self.conn_id} write failed: {e}")
            self._closing = True
        finally:
            self._control.clear()
            self._frame = None
            self._idle.set()
