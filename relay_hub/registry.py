"""
Pair Registry - Slot ownership table.

Holds a fixed set of pairs, each with a producer slot and a display slot.
The registry is the only writer of slot contents; callers get the evicted
occupant back from assign() and are responsible for notifying and closing it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

PRODUCER = "producer"
DISPLAY = "display"
VALID_ROLES: Tuple[str, ...] = (PRODUCER, DISPLAY)
DEFAULT_PAIRS: Tuple[int, ...] = (1, 2)


class InvalidSlotError(ValueError):
    """Raised when a pair or role is outside the configured set."""


@dataclass(frozen=True)
class Slot:
    """A (pair, role) coordinate."""
    pair: int
    role: str


@dataclass(frozen=True)
class PairStatus:
    """Occupancy of both slots of a pair."""
    pair: int
    producer_present: bool
    display_present: bool

    def to_dict(self) -> dict:
        return {
            "producer_present": self.producer_present,
            "display_present": self.display_present,
        }


class PairRegistry:
    """
    In-memory table of pair slots.

    Every method is synchronous and must be called from the hub's event loop
    thread, which linearises all mutations.
    """

    def __init__(self, pairs: Iterable[int] = DEFAULT_PAIRS):
        """
        Initialize the registry.

        Args:
            pairs: Pair identifiers served by this deployment
        """
        pair_ids = tuple(pairs)
        if not pair_ids:
            raise ValueError("At least one pair is required")
        for pair in pair_ids:
            if not _is_pair_id(pair) or pair <= 0:
                raise ValueError(f"Pair identifiers must be positive integers, got {pair!r}")

        self.pairs: Tuple[int, ...] = pair_ids
        self._slots: Dict[int, Dict[str, Optional[Any]]] = {
            pair: {role: None for role in VALID_ROLES} for pair in pair_ids
        }
        # Reverse index: connection -> slot it holds
        self._held: Dict[Any, Slot] = {}

    def validate(self, pair: Any, role: Any) -> Slot:
        """
        Check a (pair, role) coordinate.

        Raises:
            InvalidSlotError: If the role or pair is not served
        """
        if not isinstance(role, str) or role not in VALID_ROLES:
            raise InvalidSlotError(f"Invalid role: {role}")
        if not _is_pair_id(pair) or pair not in self._slots:
            raise InvalidSlotError(f"Invalid pair: {pair}")
        return Slot(pair=pair, role=role)

    def assign(self, connection: Any, pair: Any, role: Any) -> Optional[Any]:
        """
        Put a connection into a slot.

        Args:
            connection: The claiming connection
            pair: Target pair identifier
            role: Target role

        Returns:
            The connection evicted from the slot, or None

        Raises:
            InvalidSlotError: If the pair or role is invalid (no state change)
        """
        slot = self.validate(pair, role)

        current = self._held.get(connection)
        if current == slot:
            return None

        # Leave the previously held slot before taking the new one
        if current is not None:
            self._clear(connection, current)

        evicted = self._slots[slot.pair][slot.role]
        if evicted is not None:
            del self._held[evicted]
            logger.info(f"[Pair {slot.pair}] {slot.role} slot taken over, evicting previous occupant")

        self._slots[slot.pair][slot.role] = connection
        self._held[connection] = slot
        return evicted

    def release(self, connection: Any) -> Optional[Slot]:
        """
        Free whatever slot a connection holds.

        Returns:
            The released slot, or None if the connection held nothing
        """
        slot = self._held.get(connection)
        if slot is None:
            return None
        self._clear(connection, slot)
        return slot

    def _clear(self, connection: Any, slot: Slot) -> None:
        if self._slots[slot.pair][slot.role] is connection:
            self._slots[slot.pair][slot.role] = None
        self._held.pop(connection, None)

    def occupant(self, pair: int, role: str) -> Optional[Any]:
        """Get the connection holding a slot."""
        slot = self.validate(pair, role)
        return self._slots[slot.pair][slot.role]

    def slot_of(self, connection: Any) -> Optional[Slot]:
        """Get the slot held by a connection."""
        return self._held.get(connection)

    def status_of(self, pair: int) -> PairStatus:
        """Get occupancy of a pair."""
        if not _is_pair_id(pair) or pair not in self._slots:
            raise InvalidSlotError(f"Invalid pair: {pair}")
        slots = self._slots[pair]
        return PairStatus(
            pair=pair,
            producer_present=slots[PRODUCER] is not None,
            display_present=slots[DISPLAY] is not None,
        )

    def members(self, pair: int) -> Tuple[Any, ...]:
        """Get the current non-empty occupants of a pair."""
        slots = self._slots[pair]
        return tuple(conn for conn in (slots[PRODUCER], slots[DISPLAY]) if conn is not None)

    def snapshot(self) -> Dict[str, dict]:
        """Get occupancy of every pair, keyed by pair id string."""
        return {str(pair): self.status_of(pair).to_dict() for pair in self.pairs}


def _is_pair_id(value: Any) -> bool:
    # bool is an int subclass; JSON true must not select pair 1
    return isinstance(value, int) and not isinstance(value, bool)
