"""Persistent records of work orders and the devices they concern."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .database import Database
from .protocol import WorkOrderStatus

log = logging.getLogger(__name__)


class WorkOrderStoreError(Exception):
    """Raised when a work order cannot be written to the database."""


class WorkOrderNotFoundError(LookupError):
    """Raised when no work order in the required state matches a ticket id."""


@dataclass
class WorkOrderRecord:
    """A work order as stored in the database."""

    ticket_id: str = ""
    client_username: str = ""
    client_ip: str = ""
    client_port: int = 0
    created_at: datetime | None = None
    status: str = ""
    expert_username: str = ""
    expert_ip: str = ""
    expert_port: int = 0
    accepted_at: datetime | None = None
    feedback_description: str = ""
    feedback_solution: str = ""
    completed_at: datetime | None = None
    device_ids: list[str] = field(default_factory=list)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _integer(value: Any) -> int:
    try:
        return 0 if value is None else int(value)
    except (TypeError, ValueError):
        return 0


def _parse_time(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds")


_CONVERTERS: dict[str, Callable[[Any], Any]] = {
    "ticket_id": _text,
    "client_username": _text,
    "client_ip": _text,
    "client_port": _integer,
    "created_at": _parse_time,
    "status": _text,
    "expert_username": _text,
    "expert_ip": _text,
    "expert_port": _integer,
    "accepted_at": _parse_time,
    "feedback_description": _text,
    "feedback_solution": _text,
    "completed_at": _parse_time,
}

_BASIC_FIELDS = ("ticket_id", "client_username", "client_ip", "client_port", "created_at")
_ACCEPTED_FIELDS = _BASIC_FIELDS + (
    "status",
    "expert_username",
    "expert_ip",
    "expert_port",
    "accepted_at",
)
_ALL_FIELDS = _ACCEPTED_FIELDS + ("feedback_description", "feedback_solution", "completed_at")


def _record(row: sqlite3.Row, fields: Iterable[str]) -> WorkOrderRecord:
    return WorkOrderRecord(**{name: _CONVERTERS[name](row[name]) for name in fields})


@contextmanager
def _transaction(conn: sqlite3.Connection) -> Iterator[None]:
    conn.execute("BEGIN")
    try:
        yield
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


class WorkOrderDAO:
    """Reads and writes the ``work_orders`` and ``work_order_devices`` tables."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def insert_work_order(
        self,
        ticket_id: str,
        client_username: str,
        client_ip: str,
        client_port: int,
        created_at: datetime,
        device_ids: Iterable[str],
    ) -> None:
        """Store a new pending work order with its devices, all or nothing."""
        devices = list(device_ids)
        conn = self._db.connection
        try:
            with _transaction(conn):
                conn.execute(
                    """
                    INSERT INTO work_orders (
                        ticket_id, client_username, client_ip, client_port,
                        created_at, status
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        ticket_id,
                        client_username,
                        client_ip,
                        client_port,
                        _timestamp(created_at),
                        WorkOrderStatus.PENDING.value,
                    ),
                )
                conn.executemany(
                    "INSERT OR IGNORE INTO work_order_devices (ticket_id, device_id)"
                    " VALUES (?, ?)",
                    [(ticket_id, device_id) for device_id in devices],
                )
        except sqlite3.Error as exc:
            raise WorkOrderStoreError(f"Failed to insert work order {ticket_id}: {exc}") from exc
        log.debug("Work order created with devices: %s", devices)

    def accept_work_order(
        self,
        ticket_id: str,
        expert_username: str,
        expert_ip: str,
        expert_port: int,
        accepted_at: datetime,
    ) -> None:
        """Move a pending work order to in-progress and record the expert."""
        try:
            cursor = self._db.connection.execute(
                """
                UPDATE work_orders SET
                    status = ?,
                    expert_username = ?,
                    expert_ip = ?,
                    expert_port = ?,
                    accepted_at = ?
                WHERE ticket_id = ? AND status = ?
                """,
                (
                    WorkOrderStatus.IN_PROGRESS.value,
                    expert_username,
                    expert_ip,
                    expert_port,
                    _timestamp(accepted_at),
                    ticket_id,
                    WorkOrderStatus.PENDING.value,
                ),
            )
        except sqlite3.Error as exc:
            raise WorkOrderStoreError(f"Failed to accept work order {ticket_id}: {exc}") from exc
        if cursor.rowcount == 0:
            raise WorkOrderNotFoundError(f"No work order found to accept: {ticket_id}")
        log.debug("Work order accepted: %s", ticket_id)

    def complete_work_order(
        self,
        ticket_id: str,
        description: str,
        solution: str,
        completed_at: datetime,
    ) -> None:
        """Move an in-progress work order to completed with the expert's feedback."""
        try:
            cursor = self._db.connection.execute(
                """
                UPDATE work_orders SET
                    status = ?,
                    feedback_description = ?,
                    feedback_solution = ?,
                    completed_at = ?
                WHERE ticket_id = ? AND status = ?
                """,
                (
                    WorkOrderStatus.COMPLETED.value,
                    description,
                    solution,
                    _timestamp(completed_at),
                    ticket_id,
                    WorkOrderStatus.IN_PROGRESS.value,
                ),
            )
        except sqlite3.Error as exc:
            raise WorkOrderStoreError(
                f"Failed to complete work order {ticket_id}: {exc}"
            ) from exc
        if cursor.rowcount == 0:
            raise WorkOrderNotFoundError(f"No work order found to complete: {ticket_id}")
        log.debug("Work order completed: %s", ticket_id)

    def get_work_order(self, ticket_id: str) -> WorkOrderRecord | None:
        """The full record with its device ids, or ``None`` if unknown."""
        conn = self._db.connection
        row = conn.execute(
            "SELECT * FROM work_orders WHERE ticket_id = ?", (ticket_id,)
        ).fetchone()
        if row is None:
            return None
        record = _record(row, _ALL_FIELDS)
        record.device_ids = [
            _text(device["device_id"])
            for device in conn.execute(
                "SELECT device_id FROM work_order_devices WHERE ticket_id = ? ORDER BY id",
                (ticket_id,),
            )
        ]
        return record

    def get_all_work_orders(self) -> list[WorkOrderRecord]:
        """Every work order, newest first, without device ids."""
        rows = self._db.connection.execute(
            "SELECT * FROM work_orders ORDER BY created_at DESC"
        ).fetchall()
        return [_record(row, _ALL_FIELDS) for row in rows]

    def get_in_progress_work_orders(self) -> list[WorkOrderRecord]:
        """Work orders an expert has accepted but not yet completed."""
        rows = self._db.connection.execute(
            "SELECT * FROM work_orders WHERE status = ?",
            (WorkOrderStatus.IN_PROGRESS.value,),
        ).fetchall()
        return [_record(row, _ACCEPTED_FIELDS) for row in rows]

    def get_pending_work_orders(self) -> list[WorkOrderRecord]:
        """Work orders waiting for an expert, with their client details."""
        rows = self._db.connection.execute(
            "SELECT * FROM work_orders WHERE status = ?",
            (WorkOrderStatus.PENDING.value,),
        ).fetchall()
        return [_record(row, _BASIC_FIELDS) for row in rows]