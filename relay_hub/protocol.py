"""
Control message schema for the relay channel.

Every text frame carries exactly one JSON object with a "type" field.
Inbound messages are parsed into dataclasses; outbound messages are built
with the helpers at the bottom of this module.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

from .registry import PairStatus

logger = logging.getLogger(__name__)

JOIN = "join"
JOINED = "joined"
STATUS = "status"
ERROR = "error"
KICKED = "kicked"
DROP = "drop"
PING = "ping"
PONG = "pong"

INBOUND_TYPES = (JOIN, DROP, PING, PONG)


class ProtocolError(ValueError):
    """Raised for malformed or unknown control payloads."""


@dataclass
class JoinMessage:
    """Endpoint announcing the slot it wants."""
    role: Any
    pair: Any

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'JoinMessage':
        if "role" not in d or "pair" not in d:
            raise ProtocolError("join requires role and pair")
        # Range checks are the registry's job
        return cls(role=d["role"], pair=d["pair"])


@dataclass
class DropMessage:
    """
    Auxiliary peer notification.

    The hub only routes it, so the original text is kept and forwarded
    as received.
    """
    raw: str


@dataclass
class ControlMessage:
    """Parsed inbound control message."""
    type: str
    body: Dict[str, Any]
    raw: str

    @classmethod
    def from_json(cls, data: str) -> 'ControlMessage':
        """
        Parse a text frame.

        Raises:
            ProtocolError: On invalid JSON, a non-object, or an unknown type
        """
        try:
            d = json.loads(data)
        except (json.JSONDecodeError, TypeError, RecursionError):
            raise ProtocolError("Invalid JSON")

        if not isinstance(d, dict):
            raise ProtocolError("Message must be a JSON object")

        msg_type = d.get("type")
        if not isinstance(msg_type, str):
            raise ProtocolError("Missing message type")
        if msg_type not in INBOUND_TYPES:
            raise ProtocolError(f"Unknown message type: {msg_type}")

        return cls(type=msg_type, body=d, raw=data)

    def as_join(self) -> JoinMessage:
        return JoinMessage.from_dict(self.body)

    def as_drop(self) -> DropMessage:
        return DropMessage(raw=self.raw)


def joined_message(role: str, pair: int) -> dict:
    return {"type": JOINED, "role": role, "pair": pair}


def status_message(status: PairStatus) -> dict:
    return {
        "type": STATUS,
        "pair": status.pair,
        "producer_present": status.producer_present,
        "display_present": status.display_present,
    }


def error_message(message: str) -> dict:
    return {"type": ERROR, "message": message}


def kicked_message(reason: str) -> dict:
    return {"type": KICKED, "reason": reason}


def ping_message() -> dict:
    return {"type": PING}


def pong_message() -> dict:
    return {"type": PONG}
