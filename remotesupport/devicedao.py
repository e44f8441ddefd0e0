"""Read access to device records, live readings, history and logs."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .database import Database

log = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 50


@dataclass
class DeviceBasicInfo:
    """Static description of one registered device."""

    device_id: str
    name: str
    device_type: str
    location: str = ""
    manufacturer: str = ""
    model: str = ""
    online_status: str = ""
    last_heartbeat: datetime | None = None
    created_at: datetime | None = None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _number(value: Any) -> float:
    return 0.0 if value is None else float(value)


def _parse_time(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds")


class DeviceDAO:
    """Queries the device tables."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def get_all_devices(self) -> list[DeviceBasicInfo]:
        """All devices, ordered by name."""
        try:
            rows = self._db.connection.execute(
                """
                SELECT device_id, name, type, location, manufacturer, model,
                       online_status, last_heartbeat, created_at
                FROM devices
                ORDER BY name
                """
            ).fetchall()
        except sqlite3.Error as exc:
            log.warning("Failed to query devices: %s", exc)
            return []
        return [
            DeviceBasicInfo(
                device_id=_text(row["device_id"]),
                name=_text(row["name"]),
                device_type=_text(row["type"]),
                location=_text(row["location"]),
                manufacturer=_text(row["manufacturer"]),
                model=_text(row["model"]),
                online_status=_text(row["online_status"]),
                last_heartbeat=_parse_time(row["last_heartbeat"]),
                created_at=_parse_time(row["created_at"]),
            )
            for row in rows
        ]

    def get_device_realtime(self, device_id: str) -> dict[str, Any]:
        """Latest reading of a device, or an empty dict if there is none."""
        try:
            row = self._db.connection.execute(
                """
                SELECT pressure, temperature, status, last_update
                FROM device_realtime
                WHERE device_id = ?
                """,
                (device_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            log.warning("Failed to query realtime data: %s", exc)
            return {}
        if row is None:
            return {}
        last_update = _parse_time(row["last_update"])
        return {
            "device_id": device_id,
            "pressure": _number(row["pressure"]),
            "temperature": _number(row["temperature"]),
            "status": _text(row["status"]),
            "last_update": last_update.isoformat(timespec="seconds") if last_update else "",
        }

    def get_device_history(
        self, device_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        """Readings between ``start`` and ``end`` inclusive, oldest first."""
        try:
            rows = self._db.connection.execute(
                """
                SELECT pressure, temperature, status, timestamp
                FROM device_history
                WHERE device_id = ? AND timestamp BETWEEN ? AND ?
                ORDER BY timestamp
                """,
                (device_id, _timestamp(start), _timestamp(end)),
            ).fetchall()
        except sqlite3.Error as exc:
            log.warning("Failed to query device history: %s", exc)
            return []
        return [
            {
                "pressure": _number(row["pressure"]),
                "temperature": _number(row["temperature"]),
                "status": _text(row["status"]),
                "timestamp": _text(row["timestamp"]),
            }
            for row in rows
        ]

    def get_device_logs(
        self, device_id: str, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[dict[str, str]]:
        """The newest ``limit`` log entries of a device, newest first."""
        try:
            rows = self._db.connection.execute(
                """
                SELECT level, message, timestamp
                FROM device_logs
                WHERE device_id = ?
                ORDER BY timestamp DESC
                LIMIT ?
                """,
                (device_id, limit),
            ).fetchall()
        except sqlite3.Error as exc:
            log.warning("Failed to query device logs: %s", exc)
            return []
        return [
            {
                "level": _text(row["level"]),
                "message": _text(row["message"]),
                "timestamp": _text(row["timestamp"]),
            }
            for row in rows
        ]