import time

import pytest

from xiaoai_wol.config import MQTTConfig
from xiaoai_wol.mqtt import MQTTError, MQTTManager

MAC = "02-00-00-00-00-01"


class FakeClient:
    def __init__(self, client_id, refuse=False, reason_code=0):
        self.client_id = client_id
        self.refuse = refuse
        self.reason_code = reason_code
        self.connected = False
        self.address = None
        self.subscriptions = []
        self.unsubscriptions = []
        self.published = []
        self.loop_stopped = False
        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    def connect(self, host, port, keepalive=60):
        self.address = (host, port)
        if self.refuse:
            raise ConnectionRefusedError("refused")

    def loop_start(self):
        self.connected = self.reason_code == 0
        self.on_connect(self, None, {}, self.reason_code, None)

    def loop_stop(self):
        self.loop_stopped = True

    def is_connected(self):
        return self.connected

    def subscribe(self, topic, qos=0):
        self.subscriptions.append((topic, qos))
        return (0, 1)

    def unsubscribe(self, topic):
        self.unsubscriptions.append(topic)
        return (0, 2)

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))
        return (0, 3)

    def disconnect(self):
        self.connected = False

    def drop(self):
        self.connected = False
        self.on_disconnect(self, None, {}, 7, None)


class FakeFactory:
    def __init__(self, refuse=False, reason_code=0):
        self.refuse = refuse
        self.reason_code = reason_code
        self.clients = []

    def __call__(self, client_id):
        client = FakeClient(client_id, self.refuse, self.reason_code)
        self.clients.append(client)
        return client


def make_config():
    return MQTTConfig(client_id="bemfa_private", server="broker.example.com", port=1883, topic="pc006")


def make_manager(factory):
    return MQTTManager(make_config(), MAC, factory, 3, 0)


def wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_initial_status_is_off():
    manager = make_manager(FakeFactory())
    assert manager.status() == "off"
    assert manager.is_connected() is False


def test_connect_subscribes_to_topic():
    factory = FakeFactory()
    manager = make_manager(factory)
    manager.connect()
    try:
        client = factory.clients[0]
        assert client.client_id == "bemfa_private"
        assert client.address == ("broker.example.com", 1883)
        assert client.subscriptions == [("pc006", 1)]
        assert manager.is_connected() is True
    finally:
        manager.disconnect()


def test_connection_info_describes_broker():
    factory = FakeFactory()
    manager = make_manager(factory)
    manager.connect()
    try:
        assert manager.connection_info() == {
            "connected": True,
            "status": "off",
            "topic": "pc006",
            "server": "broker.example.com:1883",
            "client_id": "bemfa_private",
        }
    finally:
        manager.disconnect()


def test_connect_retries_then_fails():
    factory = FakeFactory(refuse=True)
    manager = make_manager(factory)
    with pytest.raises(MQTTError, match="已重试 3 次"):
        manager.connect()
    assert len(factory.clients) == 3
    assert manager.is_connected() is False


def test_refused_connack_is_an_error():
    factory = FakeFactory(reason_code=5)
    manager = make_manager(factory)
    with pytest.raises(MQTTError):
        manager.connect()
    assert all(client.subscriptions == [] for client in factory.clients)


def test_publish_without_connection_fails():
    manager = make_manager(FakeFactory())
    with pytest.raises(MQTTError, match="未连接"):
        manager.publish("on")
    assert manager.status() == "off"


def test_publish_records_status():
    factory = FakeFactory()
    manager = make_manager(factory)
    manager.connect()
    try:
        manager.publish("on")
        assert factory.clients[0].published == [("pc006", "on", 1)]
        assert manager.status() == "on"
    finally:
        manager.disconnect()


def test_non_wake_message_only_sets_status():
    manager = make_manager(FakeFactory())
    assert manager.handle_message(b"off", "pc006") is None
    assert manager.status() == "off"
    assert manager.handle_message("idle", "pc006") is None
    assert manager.status() == "idle"


def test_wake_message_wakes_and_publishes_off():
    factory = FakeFactory()
    manager = make_manager(factory)
    manager.off_delay = 0
    woken = []
    manager.waker = lambda mac: woken.append(mac) or "sent"
    manager.connect()
    try:
        worker = manager.handle_message(b"on", "pc006")
        worker.join(3)
        assert woken == [MAC]
        assert factory.clients[0].published[-1] == ("pc006", "off", 1)
        assert manager.status() == "off"
    finally:
        manager.disconnect()


def test_trigger_reconnect_is_not_repeated():
    manager = make_manager(FakeFactory())
    assert manager.trigger_reconnect() is True
    assert manager.trigger_reconnect() is False


def test_lost_connection_reconnects():
    factory = FakeFactory()
    manager = make_manager(factory)
    manager.connect()
    try:
        factory.clients[0].drop()
        assert wait_until(lambda: len(factory.clients) == 2 and manager.is_connected())
        assert factory.clients[1].subscriptions == [("pc006", 1)]
    finally:
        manager.disconnect()


def test_disconnect_unsubscribes_and_closes():
    factory = FakeFactory()
    manager = make_manager(factory)
    manager.connect()
    manager.disconnect()
    client = factory.clients[0]
    assert client.unsubscriptions == ["pc006"]
    assert client.loop_stopped is True
    assert manager.is_connected() is False
    assert len(factory.clients) == 1