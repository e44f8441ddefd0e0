from datetime import datetime

from remotesupport.protocol import WorkOrderStatus
from remotesupport.workorder import WorkOrder


def test_ticket_id_from_creation_time():
    order = WorkOrder(["DEV-A"], created_at=datetime(2024, 1, 2, 3, 4, 5))
    assert order.ticket_id == "T20240102030405"


def test_new_order_defaults():
    order = WorkOrder(["DEV-A", "DEV-B"])
    assert order.device_ids == ["DEV-A", "DEV-B"]
    assert order.status is WorkOrderStatus.PENDING
    assert order.is_active is True
    assert order.is_empty() is True
    assert order.ticket_id.startswith("T")


def test_add_client_ignores_duplicates():
    order = WorkOrder([])
    first, second = object(), object()
    order.add_client(first)
    order.add_client(first)
    order.add_client(second)
    assert order.clients == [first, second]
    assert order.is_empty() is False


def test_remove_last_client_deactivates():
    order = WorkOrder([])
    first, second = object(), object()
    order.add_client(first)
    order.add_client(second)
    order.remove_client(first)
    assert order.clients == [second]
    assert order.is_active is True
    order.remove_client(second)
    assert order.is_empty() is True
    assert order.is_active is False


def test_remove_unknown_client_from_empty_order():
    order = WorkOrder([])
    order.remove_client(object())
    assert order.clients == []
    assert order.is_active is False


def test_device_ids_copied():
    devices = ["DEV-A"]
    order = WorkOrder(devices)
    devices.append("DEV-B")
    assert order.device_ids == ["DEV-A"]