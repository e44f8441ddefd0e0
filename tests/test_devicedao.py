from datetime import datetime

import pytest

from remotesupport.database import Database
from remotesupport.devicedao import DeviceDAO


@pytest.fixture
def database(tmp_path):
    db = Database()
    db.initialize(tmp_path)
    yield db
    db.close()


@pytest.fixture
def dao(database):
    conn = database.connection
    conn.execute(
        "INSERT INTO devices (device_id, name, type, location, manufacturer, model,"
        " online_status, last_heartbeat, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        ("DEV-B", "Zeta motor", "Motor", "Hall 2", "Maker", "M-1", "online",
         "2024-05-01T08:00:00", "2024-04-01T09:30:00"),
    )
    conn.execute(
        "INSERT INTO devices (device_id, name, type, created_at) VALUES (?, ?, ?, ?)",
        ("DEV-A", "Alpha sensor", "Sensor", "2024-04-02T10:00:00"),
    )
    return DeviceDAO(database)


def test_devices_ordered_by_name(dao):
    devices = dao.get_all_devices()
    assert [d.device_id for d in devices] == ["DEV-A", "DEV-B"]


def test_device_fields(dao):
    motor = {d.device_id: d for d in dao.get_all_devices()}["DEV-B"]
    assert motor.name == "Zeta motor"
    assert motor.device_type == "Motor"
    assert motor.location == "Hall 2"
    assert motor.online_status == "online"
    assert motor.last_heartbeat == datetime(2024, 5, 1, 8, 0, 0)
    assert motor.created_at == datetime(2024, 4, 1, 9, 30, 0)


def test_device_missing_optional_fields(dao):
    sensor = {d.device_id: d for d in dao.get_all_devices()}["DEV-A"]
    assert sensor.location == ""
    assert sensor.online_status == "offline"
    assert sensor.last_heartbeat is None


def test_realtime_reading(dao, database):
    database.connection.execute(
        "INSERT INTO device_realtime (device_id, pressure, temperature, status, last_update)"
        " VALUES (?, ?, ?, ?, ?)",
        ("DEV-A", 88.5, 61.0, "normal", "2024-05-01T08:00:00.250"),
    )
    assert dao.get_device_realtime("DEV-A") == {
        "device_id": "DEV-A",
        "pressure": 88.5,
        "temperature": 61.0,
        "status": "normal",
        "last_update": "2024-05-01T08:00:00",
    }


def test_realtime_missing_device(dao):
    assert dao.get_device_realtime("DEV-Z") == {}


def test_history_range_and_order(dao, database):
    conn = database.connection
    for stamp, pressure in [
        ("2024-05-01T10:00:00.000", 82.0),
        ("2024-05-01T08:00:00.000", 80.0),
        ("2024-05-01T12:00:00.000", 90.0),
    ]:
        conn.execute(
            "INSERT INTO device_history (device_id, pressure, temperature, status, timestamp)"
            " VALUES (?, ?, ?, ?, ?)",
            ("DEV-A", pressure, 55.0, "normal", stamp),
        )
    history = dao.get_device_history(
        "DEV-A", datetime(2024, 5, 1, 7), datetime(2024, 5, 1, 11)
    )
    assert [entry["pressure"] for entry in history] == [80.0, 82.0]
    assert history[0]["timestamp"] == "2024-05-01T08:00:00.000"
    assert dao.get_device_history(
        "DEV-B", datetime(2024, 5, 1, 7), datetime(2024, 5, 1, 13)
    ) == []


def test_logs_newest_first_with_limit(dao, database):
    conn = database.connection
    for stamp, message in [
        ("2024-05-01T08:00:00", "first"),
        ("2024-05-01T09:00:00", "second"),
        ("2024-05-01T10:00:00", "third"),
    ]:
        conn.execute(
            "INSERT INTO device_logs (device_id, level, message, timestamp) VALUES (?, ?, ?, ?)",
            ("DEV-A", "WARN", message, stamp),
        )
    logs = dao.get_device_logs("DEV-A", 2)
    assert [entry["message"] for entry in logs] == ["third", "second"]
    assert logs[0]["level"] == "WARN"
    assert len(dao.get_device_logs("DEV-A")) == 3