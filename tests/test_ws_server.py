"""
End-to-end tests for the FastAPI relay endpoint.

Run with:
    pytest tests/test_ws_server.py -v
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from relay_hub.hub import RelayHub
from relay_hub.registry import PairRegistry
from relay_hub.ws_server import RelayServer, create_app

from conftest import join, status


@pytest.fixture
def server():
    return RelayServer(hub=RelayHub(registry=PairRegistry((1, 2))))


@pytest.fixture
def client(server):
    # One client per test so every socket shares the app's event loop
    with TestClient(server.app) as client:
        yield client


def joined(role, pair):
    return {"type": "joined", "role": role, "pair": pair}


class TestRelayEndpoint:

    def test_producer_frame_reaches_display(self, client):
        with client.websocket_connect("/ws") as producer:
            producer.send_text(join("producer", 1))
            assert producer.receive_json() == joined("producer", 1)
            assert producer.receive_json() == status(1, True, False)

            with client.websocket_connect("/ws") as display:
                display.send_text(join("display", 1))
                assert display.receive_json() == joined("display", 1)
                assert display.receive_json() == status(1, True, True)
                assert producer.receive_json() == status(1, True, True)

                frame = bytes(i % 256 for i in range(2048))
                producer.send_bytes(frame)
                assert display.receive_bytes() == frame

    def test_replaced_producer_is_kicked_then_closed(self, client):
        with client.websocket_connect("/ws") as first:
            first.send_text(join("producer", 1))
            assert first.receive_json() == joined("producer", 1)
            assert first.receive_json() == status(1, True, False)

            with client.websocket_connect("/ws") as second:
                second.send_text(join("producer", 1))

                assert first.receive_json() == {"type": "kicked", "reason": "replaced"}
                with pytest.raises(WebSocketDisconnect) as exc:
                    first.receive_json()
                assert exc.value.code == 1000

                assert second.receive_json() == joined("producer", 1)
                assert second.receive_json() == status(1, True, False)

    def test_invalid_role_gets_error_and_no_status(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text(join("referee", 1))
            assert ws.receive_json() == {"type": "error", "message": "Invalid role: referee"}

            # The next reply must be the pong; nothing else was queued
            ws.send_text('{"type": "ping"}')
            assert ws.receive_json() == {"type": "pong"}

    def test_invalid_json_keeps_connection_open(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("{oops")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}
            ws.send_text(join("display", 2))
            assert ws.receive_json() == joined("display", 2)

    def test_display_leaving_updates_producer(self, client):
        with client.websocket_connect("/ws") as producer:
            producer.send_text(join("producer", 2))
            producer.receive_json()
            producer.receive_json()

            with client.websocket_connect("/ws") as display:
                display.send_text(join("display", 2))
                display.receive_json()
                display.receive_json()
                assert producer.receive_json() == status(2, True, True)

            assert producer.receive_json() == status(2, True, False)


class TestHttpRoutes:

    def test_health_reports_pairs(self, client):
        assert client.get("/health").json() == {
            "status": "ok",
            "pairs": {
                "1": {"producer_present": False, "display_present": False},
                "2": {"producer_present": False, "display_present": False},
            },
            "connected_clients": 0,
        }

        with client.websocket_connect("/ws") as ws:
            ws.send_text(join("producer", 2))
            ws.receive_json()
            ws.receive_json()

            body = client.get("/health").json()
            assert body["pairs"]["2"] == {"producer_present": True, "display_present": False}
            assert body["connected_clients"] == 1

    def test_stats(self, client):
        body = client.get("/stats").json()
        assert body["hub"]["connected_clients"] == 0
        assert body["liveness"]["running"] is True
        assert body["liveness"]["interval"] == 30.0


def test_create_app_serves_health():
    with TestClient(create_app()) as client:
        response = client.get("/health")
    assert response.status_code == 200
    assert set(response.json()["pairs"]) == {"1", "2"}
