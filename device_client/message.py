"""
Message Schema and Validation for the relay control channel.

Builds outgoing control messages and parses the hub's replies. Drop
events are validated before transmission.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple

logger = logging.getLogger(__name__)

ROLES = ("producer", "display")


@dataclass
class JoinMessage:
    """Slot announcement sent right after the socket opens."""
    role: str
    pair: int

    def to_json(self) -> str:
        return json.dumps({"type": "join", "role": self.role, "pair": self.pair})


@dataclass
class DropEvent:
    """
    Water drop notification for the peer pair.

    Attributes:
        x: Column on the 32x32 grid
        y: Row on the 32x32 grid
        strength: Drop energy
        radius: Drop radius in pixels
        color: Tint as (r, g, b)
    """
    x: int
    y: int
    strength: float = 1.0
    radius: int = 2
    color: Tuple[int, int, int] = (60, 150, 255)

    def to_json(self) -> str:
        r, g, b = self.color
        return json.dumps({
            "type": "drop",
            "x": self.x,
            "y": self.y,
            "strength": self.strength,
            "radius": self.radius,
            "color": {"r": r, "g": g, "b": b},
        })

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'DropEvent':
        color = d.get("color") or {}
        if not isinstance(color, Mapping):
            raise ValueError(f"color must be an object, got {type(color).__name__}")
        return cls(
            x=int(d["x"]),
            y=int(d["y"]),
            strength=float(d.get("strength", 1.0)),
            radius=int(d.get("radius", 2)),
            color=(int(color.get("r", 0)), int(color.get("g", 0)), int(color.get("b", 0))),
        )


@dataclass
class ServerMessage:
    """Parsed message from the hub."""
    type: str
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: str) -> 'ServerMessage':
        """
        Deserialize from JSON string.

        Raises:
            ValueError: If the payload is not an object with a type
        """
        d = json.loads(data)
        if not isinstance(d, dict) or not isinstance(d.get("type"), str):
            raise ValueError("Message must be an object with a type")
        return cls(type=d["type"], body=d)


def pong_message() -> str:
    return json.dumps({"type": "pong"})


class DropValidator:
    """
    Validates outgoing drop events.

    Ensures:
    - x and y are on the grid
    - strength is finite
    - radius is positive
    - colour channels are 0..255
    """

    def __init__(self, grid_size: int = 32):
        self.grid_size = grid_size
        self._dropped_count = 0
        self._validated_count = 0

    def validate(self, event: DropEvent) -> Tuple[bool, str]:
        """
        Validate a drop event.

        Returns:
            Tuple of (is_valid, reason_string)
        """
        if not (0 <= event.x < self.grid_size and 0 <= event.y < self.grid_size):
            self._dropped_count += 1
            logger.warning(f"Invalid drop: ({event.x}, {event.y}) is off the grid")
            return False, "position_out_of_bounds"

        if not math.isfinite(event.strength):
            self._dropped_count += 1
            logger.warning(f"Invalid drop: strength={event.strength} is not finite")
            return False, "strength_not_finite"

        if event.radius <= 0:
            self._dropped_count += 1
            logger.warning(f"Invalid drop: radius={event.radius} is not positive")
            return False, "radius_not_positive"

        if len(event.color) != 3 or not all(0 <= c <= 255 for c in event.color):
            self._dropped_count += 1
            logger.warning(f"Invalid drop: color={event.color} outside 0..255")
            return False, "color_out_of_range"

        self._validated_count += 1
        return True, "ok"

    def get_stats(self) -> dict:
        """Get validation statistics."""
        total = self._validated_count + self._dropped_count
        return {
            "total_messages": total,
            "validated": self._validated_count,
            "dropped": self._dropped_count,
        }
