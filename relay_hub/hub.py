"""
Relay Hub - Per-connection state machine and routing.

Handles:
- join: slot assignment, eviction of the previous occupant, status broadcast
- drop: forwarding to the counterpart pair's producer
- binary frames: producer -> display of the same pair, latest frame wins
- close / eviction / reaping: slot release and status broadcast

All handlers are synchronous. They run to completion on the event loop, so a
registry mutation and the status broadcast it causes are never interleaved
with another message.
"""

import itertools
import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .connection import Connection, WS_GOING_AWAY, WS_NORMAL_CLOSURE
from .protocol import (
    DROP,
    JOIN,
    PING,
    PONG,
    ControlMessage,
    ProtocolError,
    error_message,
    joined_message,
    kicked_message,
    pong_message,
    status_message,
)
from .registry import DEFAULT_PAIRS, DISPLAY, PRODUCER, InvalidSlotError, PairRegistry, PairStatus

logger = logging.getLogger(__name__)

KICK_REASON_REPLACED = "replaced"


class ConnectionState(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    CLOSED = "closed"


def default_drop_routes(pairs: Iterable[int]) -> Dict[int, int]:
    """
    Pairwise swap for a two-pair deployment.

    Any other deployment has no implicit routing and must configure one.
    """
    pair_ids = sorted(pairs)
    if len(pair_ids) == 2:
        a, b = pair_ids
        return {a: b, b: a}
    return {}


def parse_drop_routes(spec: str) -> Dict[int, int]:
    """
    Parse a route table like "1:2,2:1,3:4,4:3".

    Raises:
        ValueError: On malformed entries
    """
    routes: Dict[int, int] = {}
    for entry in spec.split(","):
        entry = entry.strip()
        if not entry:
            continue
        src, sep, dst = entry.partition(":")
        if not sep:
            raise ValueError(f"Invalid drop route: {entry!r}")
        routes[int(src)] = int(dst)
    return routes


class RelayHub:
    """
    Relay hub bound to a PairRegistry.

    Features:
    - Newcomer always wins a contested slot; the incumbent is kicked
    - Status sent to both slots after every assignment or release
    - Binary frames forwarded verbatim, never buffered for absent peers
    """

    def __init__(
        self,
        registry: Optional[PairRegistry] = None,
        drop_routes: Optional[Mapping[int, int]] = None,
        on_status: Optional[Callable[[PairStatus], None]] = None,
    ):
        """
        Initialize relay hub.

        Args:
            registry: Slot table (defaults to pairs 1 and 2)
            drop_routes: Source pair -> target pair for drop messages
            on_status: Callback for every status broadcast
        """
        self.registry = registry or PairRegistry(DEFAULT_PAIRS)
        if drop_routes is None:
            drop_routes = default_drop_routes(self.registry.pairs)
        for src, dst in drop_routes.items():
            if src not in self.registry.pairs or dst not in self.registry.pairs:
                raise ValueError(f"Drop route {src}->{dst} references an unknown pair")
        self.drop_routes: Dict[int, int] = dict(drop_routes)
        self.on_status = on_status

        self._connections: Dict[str, Connection] = {}
        self._ids = itertools.count(1)

        # Statistics
        self._total_messages = 0
        self._invalid_messages = 0
        self._frames_forwarded = 0
        self._frames_unrouted = 0
        self._frames_dropped = 0
        self._evictions = 0
        self._reaped = 0

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def open(self, websocket: Any) -> Connection:
        """Register a freshly accepted transport and start its writer."""
        conn = Connection(websocket, f"conn_{next(self._ids)}")
        self._connections[conn.conn_id] = conn
        conn.start()
        logger.info(f"Client connected: {conn.conn_id}")
        return conn

    def state_of(self, conn: Connection) -> ConnectionState:
        if conn.conn_id not in self._connections:
            return ConnectionState.CLOSED
        if self.registry.slot_of(conn) is None:
            return ConnectionState.UNASSIGNED
        return ConnectionState.ASSIGNED

    def disconnect(self, conn: Connection, code: int = WS_NORMAL_CLOSURE, reason: str = "") -> None:
        """
        Move a connection to CLOSED.

        Releases its slot, tells the pair's remaining occupant and closes the
        transport. Safe to call more than once.
        """
        if self._connections.pop(conn.conn_id, None) is None:
            conn.close(code, reason)
            return

        slot = self.registry.release(conn)
        conn.close(code, reason)

        if slot is not None:
            logger.info(f"[Pair {slot.pair}] {slot.role} disconnected ({conn.conn_id})")
            self._broadcast_status(slot.pair)
        else:
            logger.info(f"Client disconnected: {conn.conn_id}")

    def reap(self, conn: Connection) -> None:
        """Force-close a connection that missed its liveness probe."""
        self._reaped += 1
        logger.info(f"Reaping unresponsive connection {conn.conn_id}")
        self.disconnect(conn, code=WS_GOING_AWAY, reason="liveness timeout")

    # ------------------------------------------------------------------
    # Inbound traffic
    # ------------------------------------------------------------------

    def handle_text(self, conn: Connection, data: str) -> None:
        """Process one inbound text frame."""
        if conn.conn_id not in self._connections:
            return
        conn.mark_alive()
        self._total_messages += 1

        try:
            msg = ControlMessage.from_json(data)
            if msg.type == JOIN:
                self._handle_join(conn, msg)
            elif msg.type == DROP:
                self._handle_drop(conn, msg)
            elif msg.type == PING:
                conn.send_json(pong_message())
            elif msg.type == PONG:
                pass
        except (ProtocolError, InvalidSlotError) as e:
            self._invalid_messages += 1
            logger.warning(f"Invalid message from {conn.conn_id}: {e}")
            conn.send_json(error_message(str(e)))

    def handle_binary(self, conn: Connection, data: bytes) -> None:
        """Forward one binary frame from a producer to its display."""
        if conn.conn_id not in self._connections:
            return
        conn.mark_alive()

        slot = self.registry.slot_of(conn)
        if slot is None or slot.role != PRODUCER:
            logger.debug(f"Ignoring binary frame from {conn.conn_id} (not a producer)")
            return

        target = self.registry.occupant(slot.pair, DISPLAY)
        if target is None or target.closed:
            self._frames_unrouted += 1
            return

        replacing = target.has_pending_frame
        if target.send_frame(data):
            if replacing:
                self._frames_dropped += 1
            self._frames_forwarded += 1

    def _handle_join(self, conn: Connection, msg: ControlMessage) -> None:
        join = msg.as_join()
        previous = self.registry.slot_of(conn)

        evicted = self.registry.assign(conn, join.pair, join.role)

        if evicted is not None:
            self._evictions += 1
            # Notify before close; the evicted connection no longer holds a slot
            evicted.send_json(kicked_message(KICK_REASON_REPLACED))
            self._connections.pop(evicted.conn_id, None)
            evicted.close(WS_NORMAL_CLOSURE, KICK_REASON_REPLACED)
            logger.info(f"[Pair {join.pair}] kicked {evicted.conn_id} ({join.role} replaced)")

        logger.info(f"[Pair {join.pair}] {join.role} joined ({conn.conn_id})")
        conn.send_json(joined_message(join.role, join.pair))

        if previous is not None and previous.pair != join.pair:
            self._broadcast_status(previous.pair)
        self._broadcast_status(join.pair)

    def _handle_drop(self, conn: Connection, msg: ControlMessage) -> None:
        slot = self.registry.slot_of(conn)
        if slot is None:
            raise ProtocolError("Join a pair before sending drop")

        target_pair = self.drop_routes.get(slot.pair)
        if target_pair is None:
            raise ProtocolError(f"No drop route for pair {slot.pair}")

        target = self.registry.occupant(target_pair, PRODUCER)
        if target is None or target.closed:
            logger.debug(f"[Pair {slot.pair}] drop not delivered, pair {target_pair} has no producer")
            return
        target.send_text(msg.as_drop().raw)

    def _broadcast_status(self, pair: int) -> None:
        status = self.registry.status_of(pair)
        payload = status_message(status)
        for member in self.registry.members(pair):
            member.send_json(payload)

        if self.on_status:
            try:
                self.on_status(status)
            except Exception as e:
                logger.error(f"Error in status callback: {e}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_pairs_status(self) -> Dict[str, dict]:
        return self.registry.snapshot()

    def get_stats(self) -> dict:
        """Get hub statistics."""
        return {
            "connected_clients": len(self._connections),
            "total_messages": self._total_messages,
            "invalid_messages": self._invalid_messages,
            "frames_forwarded": self._frames_forwarded,
            "frames_unrouted": self._frames_unrouted,
            "frames_dropped": self._frames_dropped,
            "evictions": self._evictions,
            "reaped": self._reaped,
        }
