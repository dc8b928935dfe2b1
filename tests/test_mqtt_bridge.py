"""
Tests for the MQTT status mirror and the hub's environment helpers.
"""

import json

import pytest

from relay_hub.main import HubGateway, env_flag, parse_pairs
from relay_hub.mqtt_bridge import MQTTStatusBridge
from relay_hub.registry import PairStatus


class FakeMessageInfo:
    """Records whether the publish was awaited while the network loop ran."""

    def __init__(self, client):
        self.client = client
        self.waited_with_loop_running = None
        self.timeout = None

    def wait_for_publish(self, timeout=None):
        self.timeout = timeout
        self.waited_with_loop_running = self.client.loop_running

    def is_published(self):
        return self.waited_with_loop_running is True


class FakeMQTTClient:
    """Stands in for paho's Client; connects as soon as the loop starts."""

    def __init__(self, client_id, accept=True):
        self.client_id = client_id
        self.accept = accept
        self.published = []
        self.infos = []
        self.on_connect = None
        self.on_disconnect = None
        self.loop_running = False
        self.connected_to = None

    def connect(self, host, port, keepalive=60):
        self.connected_to = (host, port)

    def loop_start(self):
        self.loop_running = True
        self.on_connect(self, None, {}, 0 if self.accept else 5, None)

    def loop_stop(self):
        self.loop_running = False

    def disconnect(self):
        self.on_disconnect(self, None, {}, 0, None)

    def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        info = FakeMessageInfo(self)
        self.infos.append(info)
        return info


@pytest.fixture
def fake_client():
    holder = {}

    def factory(client_id):
        holder["client"] = FakeMQTTClient(client_id)
        return holder["client"]

    return holder, factory


class TestMQTTStatusBridge:

    def test_publishes_retained_status_per_pair(self, fake_client):
        holder, factory = fake_client
        bridge = MQTTStatusBridge(host="broker", port=1884, topic="relay/status/", client_factory=factory)

        assert bridge.start() is True
        client = holder["client"]
        assert client.connected_to == ("broker", 1884)
        assert client.client_id.startswith("relay_hub_")

        assert bridge.publish_status(PairStatus(2, True, False))
        topic, payload, qos, retain = client.published[-1]
        assert topic == "relay/status/2"
        assert qos == 0 and retain is True
        body = json.loads(payload)
        assert body["pair"] == 2
        assert body["producer_present"] is True
        assert body["display_present"] is False
        assert isinstance(body["ts"], int)
        assert bridge.get_stats()["messages_sent"] == 1

    def test_stop_clears_retained_topics(self, fake_client):
        holder, factory = fake_client
        bridge = MQTTStatusBridge(client_factory=factory)
        bridge.start()
        bridge.publish_status(PairStatus(1, True, True))
        client = holder["client"]

        bridge.stop()
        assert client.published[-1] == ("relay/status/1", b"", 0, True)
        # The clear is flushed before the network loop stops
        assert client.infos[-1].waited_with_loop_running is True
        assert client.infos[-1].timeout == 2.0
        assert client.loop_running is False
        assert bridge.connected is False

    def test_not_connected_skips_publish(self):
        bridge = MQTTStatusBridge()
        assert bridge.publish_status(PairStatus(1, False, False)) is False

    def test_refused_connection_reports_failure(self, monkeypatch):
        monkeypatch.setattr("relay_hub.mqtt_bridge.time.sleep", lambda _: None)
        bridge = MQTTStatusBridge(client_factory=lambda cid: FakeMQTTClient(cid, accept=False))
        assert bridge.start() is False
        assert bridge.connected is False

    def test_connect_error_reports_failure(self):
        def broken(client_id):
            raise OSError("connection refused")

        assert MQTTStatusBridge(client_factory=broken).start() is False


class TestHubConfig:

    def test_parse_pairs(self):
        assert parse_pairs("1,2") == (1, 2)
        assert parse_pairs(" 3, 4 ,") == (3, 4)
        with pytest.raises(ValueError):
            parse_pairs("one")

    @pytest.mark.parametrize("value,expected", [
        ("true", True), ("1", True), ("YES", True), ("false", False), ("0", False),
    ])
    def test_env_flag(self, monkeypatch, value, expected):
        monkeypatch.setenv("MQTT_ENABLED", value)
        assert env_flag("MQTT_ENABLED") is expected

    def test_env_flag_default(self, monkeypatch):
        monkeypatch.delenv("MQTT_ENABLED", raising=False)
        assert env_flag("MQTT_ENABLED") is False
        assert env_flag("MQTT_ENABLED", default=True) is True

    def test_gateway_rejects_bad_routes(self):
        with pytest.raises(ValueError):
            HubGateway(pairs=(1, 2), drop_routes={1: 3})

    def test_gateway_without_mqtt(self):
        gateway = HubGateway(pairs=(1, 2, 3))
        assert gateway.hub.registry.pairs == (1, 2, 3)
        assert gateway.get_stats()["mqtt_bridge"] == {}
        # Status changes are harmless without a bridge
        gateway._on_status(PairStatus(1, True, False))
