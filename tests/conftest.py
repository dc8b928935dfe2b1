"""
Shared test fixtures for the relay hub and the device client.

Provides:
- Fake WebSocket transport recording everything the hub writes
- Fake network link, session and clock for the supervisor
"""

import json
from typing import List, Optional, Union

import pytest

from relay_hub.hub import RelayHub
from relay_hub.registry import PairRegistry


class FakeWebSocket:
    """Hub-side transport double; records writes in order."""

    def __init__(self):
        self.events: List[tuple] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise RuntimeError("send after close")
        self.events.append(("text", json.loads(data)))

    async def send_bytes(self, data: bytes) -> None:
        if self.closed:
            raise RuntimeError("send after close")
        self.events.append(("bytes", data))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self.events.append(("close", code))

    @property
    def messages(self) -> List[dict]:
        return [payload for kind, payload in self.events if kind == "text"]

    @property
    def frames(self) -> List[bytes]:
        return [payload for kind, payload in self.events if kind == "bytes"]

    def of_type(self, msg_type: str) -> List[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]


def join(role: str, pair) -> str:
    return json.dumps({"type": "join", "role": role, "pair": pair})


def status(pair: int, producer: bool, display: bool) -> dict:
    return {
        "type": "status",
        "pair": pair,
        "producer_present": producer,
        "display_present": display,
    }


async def settle(*conns) -> None:
    """Wait until every connection's writer has flushed."""
    for conn in conns:
        await conn.drain()


@pytest.fixture
def hub() -> RelayHub:
    return RelayHub(registry=PairRegistry((1, 2)))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNetwork:
    """Radio double: up/down is set by the test."""

    def __init__(self, up: bool = True):
        self.up = up
        self.begin_calls = 0

    def begin(self) -> None:
        self.begin_calls += 1

    def is_up(self) -> bool:
        return self.up


class FakeLight:
    def __init__(self):
        self.on: Optional[bool] = None
        self.history: List[bool] = []

    def set(self, on: bool) -> None:
        self.on = on
        self.history.append(on)


class FakeSession:
    """Session double fed by the test through `incoming`."""

    def __init__(self, fail_open: bool = False):
        self.fail_open = fail_open
        self.incoming: List[Union[str, bytes]] = []
        self.sent: List[Union[str, bytes]] = []
        self.is_open = False
        self.open_calls = 0
        self.closed = False

    def open(self) -> None:
        from device_client.ws_client import SessionError

        self.open_calls += 1
        if self.fail_open:
            raise SessionError("Connection failed: refused")
        self.is_open = True

    def poll(self):
        messages, self.incoming = self.incoming, []
        return messages

    def send(self, message) -> bool:
        if not self.is_open:
            return False
        self.sent.append(message)
        return True

    def close(self) -> None:
        self.is_open = False
        self.closed = True

    def push(self, payload: Union[dict, bytes]) -> None:
        self.incoming.append(payload if isinstance(payload, bytes) else json.dumps(payload))

    def get_stats(self) -> dict:
        return {"connected": self.is_open}

    @property
    def sent_json(self) -> List[dict]:
        return [json.loads(m) for m in self.sent if isinstance(m, str)]


class SessionFactory:
    """Hands out FakeSessions and remembers them."""

    def __init__(self):
        self.sessions: List[FakeSession] = []
        self.fail_next = 0

    def __call__(self) -> FakeSession:
        session = FakeSession(fail_open=self.fail_next > 0)
        if self.fail_next:
            self.fail_next -= 1
        self.sessions.append(session)
        return session

    @property
    def current(self) -> FakeSession:
        return self.sessions[-1]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def sessions() -> SessionFactory:
    return SessionFactory()
