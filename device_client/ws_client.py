"""
WebSocket session for the device main loop.

Handles:
- Opening the relay socket with a bounded handshake
- Non-blocking polling (never waits for a message)
- Send / close that report failures instead of raising transport errors
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Union

from websockets.exceptions import ConnectionClosed, InvalidHandshake, WebSocketException
from websockets.sync.client import ClientConnection, connect

logger = logging.getLogger(__name__)

Message = Union[str, bytes]


class SessionError(ConnectionError):
    """Raised when the relay socket cannot be opened."""


@dataclass
class SessionStats:
    """Statistics about the current socket."""
    connected: bool = False
    connect_time: Optional[float] = None
    disconnect_time: Optional[float] = None
    messages_sent: int = 0
    messages_failed: int = 0
    messages_received: int = 0


class WebSocketSession:
    """
    One relay socket, driven by polling.

    The session never reconnects by itself; the supervisor owns that
    decision. After any transport error `is_open` turns False and the
    instance is discarded.
    """

    def __init__(
        self,
        server_url: str,
        open_timeout: float = 5.0,
        close_timeout: float = 2.0,
        max_poll_messages: int = 16,
    ):
        """
        Initialize session.

        Args:
            server_url: Relay URL (e.g., ws://127.0.0.1:3000/ws)
            open_timeout: Handshake timeout in seconds
            close_timeout: Close handshake timeout in seconds
            max_poll_messages: Upper bound on messages returned per poll
        """
        self.server_url = server_url
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.max_poll_messages = max_poll_messages

        self._ws: Optional[ClientConnection] = None
        self._open = False
        self.stats = SessionStats()

    @property
    def is_open(self) -> bool:
        return self._open and self._ws is not None

    def open(self) -> None:
        """
        Connect to the relay.

        Raises:
            SessionError: If the handshake fails or times out
        """
        logger.info(f"Connecting to {self.server_url}...")
        try:
            self._ws = connect(
                self.server_url,
                open_timeout=self.open_timeout,
                close_timeout=self.close_timeout,
            )
        except InvalidHandshake as e:
            raise SessionError(f"Handshake rejected: {e}") from e
        except (OSError, TimeoutError, WebSocketException) as e:
            raise SessionError(f"Connection failed: {e}") from e

        self._open = True
        self.stats.connected = True
        self.stats.connect_time = time.time()
        logger.info("WebSocket connected")

    def poll(self) -> List[Message]:
        """
        Return whatever messages have already arrived.

        Never waits. A closed socket flips is_open to False.
        """
        messages: List[Message] = []
        if not self.is_open:
            return messages

        while len(messages) < self.max_poll_messages:
            try:
                messages.append(self._ws.recv(timeout=0))
            except TimeoutError:
                break
            except ConnectionClosed as e:
                logger.info(f"WebSocket closed by server ({e.rcvd.code if e.rcvd else 'no close frame'})")
                self._mark_closed()
                break

        self.stats.messages_received += len(messages)
        return messages

    def send(self, message: Message) -> bool:
        """
        Send a text or binary message.

        Returns:
            True if handed to the socket
        """
        if not self.is_open:
            self.stats.messages_failed += 1
            return False
        try:
            self._ws.send(message)
            self.stats.messages_sent += 1
            return True
        except (ConnectionClosed, WebSocketException, OSError) as e:
            self.stats.messages_failed += 1
            logger.warning(f"Send failed: {e}")
            self._mark_closed()
            return False

    def close(self) -> None:
        """Close the socket if still open."""
        if self._ws is not None:
            try:
                self._ws.close()
            except (WebSocketException, OSError) as e:
                logger.debug(f"Error while closing: {e}")
        self._mark_closed()

    def _mark_closed(self) -> None:
        if self._open:
            self.stats.disconnect_time = time.time()
        self._open = False
        self.stats.connected = False

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "connected": self.is_open,
            "connect_time": self.stats.connect_time,
            "disconnect_time": self.stats.disconnect_time,
            "messages_sent": self.stats.messages_sent,
            "messages_failed": self.stats.messages_failed,
            "messages_received": self.stats.messages_received,
        }
