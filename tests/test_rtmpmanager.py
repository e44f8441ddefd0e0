import base64
import json

import pytest

from remotesupport.rtmpmanager import RTMPManager
from remotesupport.workorder import WorkOrder

URL = "rtmp://localhost/live/T1_cam"


class FakeSession:
    def __init__(self, port):
        self.sent = []
        self.current_ticket = None
        self.client_ip = "127.0.0.1"
        self.client_port = port

    def send_message(self, data):
        self.sent.append(json.loads(data))


class Orders:
    def __init__(self):
        self.orders = {}

    def get_work_order(self, ticket_id):
        return self.orders.get(ticket_id)


@pytest.fixture
def setup():
    orders = Orders()
    order = WorkOrder(["DEV-A"])
    sessions = [FakeSession(5000 + n) for n in range(3)]
    for session in sessions:
        order.add_client(session)
        session.current_ticket = order
    orders.orders[order.ticket_id] = order
    manager = RTMPManager(orders, clock_ms=lambda: 1234)
    return manager, order, sessions


def test_start_notifies_subscribers(setup):
    manager, order, (publisher, viewer, other) = setup
    started = []
    manager.stream_started.append(lambda t, u: started.append((t, u)))
    manager.on_stream_started(publisher, order.ticket_id, URL)
    assert publisher.sent == []
    expected = {
        "type": "rtmp_stream_available",
        "data": {
            "ticket_id": order.ticket_id,
            "stream_url": URL,
            "publisher_ip": "127.0.0.1",
            "publisher_port": publisher.client_port,
        },
    }
    assert viewer.sent == [expected]
    assert other.sent == [expected]
    assert started == [(order.ticket_id, URL)]
    assert manager.is_ticket_streaming(order.ticket_id)
    assert manager.get_stream_url(order.ticket_id) == URL


def test_unknown_ticket_has_no_stream(setup):
    manager, _, _ = setup
    assert not manager.is_ticket_streaming("missing")
    assert manager.get_stream_url("missing") is None


def test_only_publisher_can_stop(setup):
    manager, order, (publisher, viewer, _) = setup
    manager.on_stream_started(publisher, order.ticket_id, URL)
    viewer.sent.clear()
    assert manager.on_stream_stopped(viewer, order.ticket_id) is False
    assert manager.is_ticket_streaming(order.ticket_id)


def test_stop_notifies_and_forgets(setup):
    manager, order, (publisher, viewer, _) = setup
    stopped = []
    manager.stream_stopped.append(stopped.append)
    manager.on_stream_started(publisher, order.ticket_id, URL)
    viewer.sent.clear()
    assert manager.on_stream_stopped(publisher, order.ticket_id) is True
    assert viewer.sent == [{
        "type": "rtmp_stream_ended",
        "data": {"ticket_id": order.ticket_id, "message": "Stream has ended"},
    }]
    assert publisher.sent == []
    assert stopped == [order.ticket_id]
    assert not manager.is_ticket_streaming(order.ticket_id)


def test_relay_stream_data_round_trips(setup):
    manager, order, (publisher, viewer, other) = setup
    available = []
    manager.stream_data_available.append(lambda t, d: available.append((t, d)))
    manager.on_stream_started(publisher, order.ticket_id, URL)
    viewer.sent.clear()
    other.sent.clear()
    payload = bytes(range(256))
    assert manager.relay_stream_data(publisher, payload) == 2
    message = viewer.sent[0]
    assert message["type"] == "rtmp_stream_data"
    assert message["data"]["ticket_id"] == order.ticket_id
    assert message["data"]["data_size"] == len(payload)
    assert base64.b64decode(message["data"]["stream_data"]) == payload
    assert message["data"]["timestamp"] == 1234
    assert other.sent == viewer.sent
    assert available == [(order.ticket_id, payload)]


def test_relay_ignores_non_publisher(setup):
    manager, order, (publisher, viewer, other) = setup
    manager.on_stream_started(publisher, order.ticket_id, URL)
    publisher.sent.clear()
    other.sent.clear()
    assert manager.relay_stream_data(viewer, b"data") == 0
    assert publisher.sent == []
    assert other.sent == []


def test_relay_without_stream_sends_nothing(setup):
    manager, _, (publisher, viewer, _) = setup
    assert manager.relay_stream_data(publisher, b"data") == 0
    assert viewer.sent == []