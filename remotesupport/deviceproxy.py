"""Simulated field devices: registration, periodic readings and control commands."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .database import Database

log = logging.getLogger(__name__)

UPDATE_INTERVAL = 3.0
SIMULATED_PREFIX = "SIM_"
SIMULATED_MANUFACTURER = "Simulated"
SIMULATED_MODEL = "SIM-2025"


@dataclass(frozen=True)
class SimulatedDevice:
    """Static description of one simulated device."""

    device_id: str
    name: str
    device_type: str
    location: str


SIMULATED_DEVICES = (
    SimulatedDevice("SIM_PLC_1001", "主控PLC", "PLC", "车间A-1楼"),
    SimulatedDevice("SIM_SENSOR_2002", "温度传感器", "Sensor", "车间A-2楼"),
    SimulatedDevice("SIM_MOTOR_3003", "主轴电机", "Motor", "车间B-流水线1"),
)


def _timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds")


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="seconds")


def _encode(message: dict[str, Any]) -> bytes:
    return json.dumps(
        message, separators=(",", ":"), sort_keys=True, ensure_ascii=False
    ).encode("utf-8")


class DeviceProxy:
    """Stands in for real devices and publishes their readings.

    Listeners appended to ``device_data_updated`` are called with
    ``(device_id, data)`` whenever a device reports new data.
    """

    def __init__(
        self,
        database: Database,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._db = database
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock
        self._counter = 0
        self.device_data_updated: list[Callable[[str, dict[str, Any]], Any]] = []
        self._register_simulated_devices()

    def _register_simulated_devices(self) -> None:
        conn = self._db.connection
        pattern = SIMULATED_PREFIX + "%"
        created_at = _timestamp(self._clock())
        try:
            for table in ("devices", "device_realtime", "device_history"):
                conn.execute(f"DELETE FROM {table} WHERE device_id LIKE ?", (pattern,))
            conn.executemany(
                """
                INSERT OR IGNORE INTO devices (
                    device_id, name, type, location, manufacturer, model,
                    created_at, online_status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 'online')
                """,
                [
                    (
                        device.device_id,
                        device.name,
                        device.device_type,
                        device.location,
                        SIMULATED_MANUFACTURER,
                        SIMULATED_MODEL,
                        created_at,
                    )
                    for device in SIMULATED_DEVICES
                ],
            )
        except sqlite3.Error as exc:
            log.warning("Failed to register simulated devices: %s", exc)

    def _emit(self, device_id: str, data: dict[str, Any]) -> None:
        for handler in list(self.device_data_updated):
            handler(device_id, data)

    def _qrand(self) -> int:
        return self._rng.randint(1, 100)

    def request_data(self, requester: Any, request: dict[str, Any]) -> dict[str, Any]:
        """Answer a data request with a simulated reading; returns the reply sent."""
        data = {
            "pressure": 85.5 + (self._qrand() % 10 - 5),
            "temperature": 62.3 + (self._qrand() % 10 - 5),
            "status": "normal",
            "timestamp": _iso(self._clock()),
            "logs": ["System started", "No errors detected"],
            "faults": [],
        }
        response = {"type": "device_data", "data": data}
        requester.send_message(_encode(response))
        return response

    def receive_control_command(self, command: dict[str, Any]) -> dict[str, Any]:
        """Record a control command for a device and publish the result."""
        device_id = str(command.get("device_id", ""))
        action = str(command.get("action", ""))
        log.debug("Control command sent to device %s: %s", device_id, action)
        try:
            self._db.connection.execute(
                "UPDATE devices SET control_count = control_count + 1 WHERE device_id = ?",
                (device_id,),
            )
        except sqlite3.Error as exc:
            log.warning("Failed to update control count: %s", exc)
        data = {
            "device_id": device_id,
            "action": action,
            "control_count": self.get_control_count(device_id),
            "timestamp": _iso(self._clock()),
        }
        self._emit(device_id, data)
        return data

    def update(self) -> list[dict[str, Any]]:
        """Produce one round of readings for every simulated device."""
        conn = self._db.connection
        now = self._clock()
        stamp = _timestamp(now)
        status = "warning" if self._counter % 5 == 0 else "normal"
        published = []
        for device in SIMULATED_DEVICES:
            device_id = device.device_id
            pressure = float(80 + self._rng.randrange(20))
            temperature = float(50 + self._rng.randrange(20))
            try:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO device_realtime (
                        device_id, pressure, temperature, status, last_update
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (device_id, pressure, temperature, status, stamp),
                )
                conn.execute(
                    """
                    INSERT INTO device_history (device_id, pressure, temperature, status, timestamp)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (device_id, pressure, temperature, status, stamp),
                )
                if self._rng.randrange(100) < 5:
                    conn.execute(
                        """
                        INSERT INTO device_logs (device_id, level, message, timestamp)
                        VALUES (?, 'WARN', 'High temperature detected', ?)
                        """,
                        (device_id, stamp),
                    )
            except sqlite3.Error as exc:
                log.warning("Failed to store reading of %s: %s", device_id, exc)
            data = {
                "device_id": device_id,
                "pressure": pressure,
                "temperature": temperature,
                "control_count": self.get_control_count(device_id),
                "status": status,
                "timestamp": _iso(now),
            }
            self._emit(device_id, data)
            published.append(data)
        self._counter += 1
        return published

    def get_control_count(self, device_id: str) -> int:
        """How many control commands a device has received, 0 if unknown."""
        try:
            row = self._db.connection.execute(
                "SELECT control_count FROM devices WHERE device_id = ?", (device_id,)
            ).fetchone()
        except sqlite3.Error:
            return 0
        if row is None or row[0] is None:
            return 0
        return int(row[0])

    async def run(self, interval: float = UPDATE_INTERVAL) -> None:
        """Call :meth:`update` every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.update()