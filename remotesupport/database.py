"""SQLite storage for the support server."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path

log = logging.getLogger(__name__)

DEFAULT_DB_DIR = "../Db/"
DB_FILE_NAME = "server.db"

_TICKET_STATES = ("pending", "in_progress", "completed")
_USER_KINDS = ("client", "expert")

_SURROGATE_KEY = ("id", "INTEGER PRIMARY KEY AUTOINCREMENT")


def _one_of(column: str, values: Iterable[str]) -> str:
    allowed = ", ".join(f"'{value}'" for value in values)
    return f"CHECK({column} IN ({allowed}))"


def _cascade(column: str, parent: str) -> str:
    return f"FOREIGN KEY ({column}) REFERENCES {parent} ({column}) ON DELETE CASCADE"


# Each table: its columns as (name, declaration) pairs, then table constraints.
_TABLES: dict[str, tuple[tuple[tuple[str, str], ...], tuple[str, ...]]] = {
    "work_orders": (
        (
            ("ticket_id", "TEXT PRIMARY KEY"),
            ("client_username", "TEXT NOT NULL"),
            ("client_ip", "TEXT NOT NULL"),
            ("client_port", "INTEGER NOT NULL"),
            ("created_at", "DATETIME NOT NULL"),
            ("status", "TEXT NOT NULL " + _one_of("status", _TICKET_STATES)),
            ("expert_username", "TEXT"),
            ("expert_ip", "TEXT"),
            ("expert_port", "INTEGER"),
            ("accepted_at", "DATETIME"),
            ("feedback_description", "TEXT"),
            ("feedback_solution", "TEXT"),
            ("completed_at", "DATETIME"),
        ),
        (),
    ),
    "work_order_devices": (
        (
            _SURROGATE_KEY,
            ("ticket_id", "TEXT NOT NULL"),
            ("device_id", "TEXT NOT NULL"),
        ),
        (_cascade("ticket_id", "work_orders"), "UNIQUE(ticket_id, device_id)"),
    ),
    "users": (
        (
            _SURROGATE_KEY,
            ("username", "TEXT UNIQUE NOT NULL"),
            ("password_hash", "TEXT NOT NULL"),
            ("user_type", "TEXT NOT NULL " + _one_of("user_type", _USER_KINDS)),
            ("created_at", "DATETIME NOT NULL"),
            ("last_login", "DATETIME"),
        ),
        (),
    ),
    "devices": (
        (
            ("device_id", "TEXT PRIMARY KEY"),
            ("name", "TEXT NOT NULL"),
            ("type", "TEXT NOT NULL"),
            ("location", "TEXT"),
            ("manufacturer", "TEXT"),
            ("model", "TEXT"),
            ("ip_address", "TEXT"),
            ("port", "INTEGER"),
            ("protocol", "TEXT"),
            ("online_status", "TEXT DEFAULT 'offline'"),
            ("last_heartbeat", "DATETIME"),
            ("created_at", "DATETIME NOT NULL"),
        ),
        (),
    ),
    "device_realtime": (
        (
            ("device_id", "TEXT PRIMARY KEY"),
            ("pressure", "REAL"),
            ("temperature", "REAL"),
            ("status", "TEXT"),
            ("humidity", "REAL"),
            ("vibration", "REAL"),
            ("power_status", "TEXT"),
            ("control_count", "INTEGER DEFAULT 0"),
            ("last_update", "DATETIME NOT NULL"),
        ),
        (_cascade("device_id", "devices"),),
    ),
    "device_history": (
        (
            _SURROGATE_KEY,
            ("device_id", "TEXT NOT NULL"),
            ("pressure", "REAL"),
            ("temperature", "REAL"),
            ("status", "TEXT"),
            ("timestamp", "DATETIME NOT NULL"),
            ("fault_code", "TEXT"),
        ),
        (_cascade("device_id", "devices"),),
    ),
    "device_logs": (
        (
            _SURROGATE_KEY,
            ("device_id", "TEXT NOT NULL"),
            ("level", "TEXT NOT NULL"),
            ("message", "TEXT NOT NULL"),
            ("timestamp", "DATETIME NOT NULL"),
        ),
        (_cascade("device_id", "devices"),),
    ),
}


def _create_statements() -> list[str]:
    statements = []
    for table, (columns, constraints) in _TABLES.items():
        parts = [f"{name} {declaration}" for name, declaration in columns]
        parts.extend(constraints)
        statements.append(f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(parts)})")
    return statements


class DatabaseError(Exception):
    """Raised when the database cannot be opened or prepared."""


class Database:
    """Owns the server's SQLite connection and creates its tables."""

    def __init__(self) -> None:
        self._conn: sqlite3.Connection | None = None
        self.path: Path | None = None

    def initialize(self, db_dir: str | Path = DEFAULT_DB_DIR) -> Path:
        """Open ``server.db`` inside ``db_dir`` and create missing tables."""
        path = Path(db_dir) / DB_FILE_NAME
        try:
            conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to open database {path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            for statement in _create_statements():
                conn.execute(statement)
        except sqlite3.Error as exc:
            conn.close()
            raise DatabaseError(f"Failed to create table: {exc}") from exc
        if self._conn is not None:
            self._conn.close()
        self._conn = conn
        self.path = path
        log.debug("All the tables ready.")
        return path

    @property
    def connection(self) -> sqlite3.Connection:
        """The open connection; raises if :meth:`initialize` has not run."""
        if self._conn is None:
            raise DatabaseError("Database is not initialized")
        return self._conn

    def close(self) -> None:
        """Close the connection if it is open."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()