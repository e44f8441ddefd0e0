"""User accounts: registration and login checks."""

from __future__ import annotations

import hashlib
import hmac
import logging
import sqlite3
from datetime import datetime

from .database import Database

log = logging.getLogger(__name__)

USER_TYPES = frozenset({"client", "expert"})


class RegistrationError(ValueError):
    """Raised when a user cannot be registered."""


class UserExistsError(RegistrationError):
    """Raised when the username is already taken."""


def hash_password(password: str) -> str:
    """SHA-256 of the UTF-8 password, as lower-case hex."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def _timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds")


class UserDAO:
    """Reads and writes the ``users`` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def register_user(
        self,
        username: str,
        password: str,
        user_type: str,
        created_at: datetime | None = None,
    ) -> None:
        """Store a new user; raises :class:`RegistrationError` on failure."""
        if not username or not password:
            raise RegistrationError("Username or password is empty")
        if user_type not in USER_TYPES:
            raise RegistrationError(f"Invalid user type: {user_type}")
        if self.user_exists(username):
            raise UserExistsError(f"User already exists: {username}")
        moment = created_at if created_at is not None else datetime.now()
        try:
            self._db.connection.execute(
                "INSERT INTO users (username, password_hash, user_type, created_at)"
                " VALUES (?, ?, ?, ?)",
                (username, hash_password(password), user_type, _timestamp(moment)),
            )
        except sqlite3.Error as exc:
            raise RegistrationError(f"Failed to insert user: {exc}") from exc
        log.debug("User registered: %s (%s)", username, user_type)

    def user_exists(self, username: str) -> bool:
        """True if a user with this name is stored."""
        row = self._db.connection.execute(
            "SELECT 1 FROM users WHERE username = ?", (username,)
        ).fetchone()
        return row is not None

    def verify_user(self, username: str, password: str) -> bool:
        """Check the password; on success record the login time."""
        conn = self._db.connection
        row = conn.execute(
            "SELECT password_hash FROM users WHERE username = ?", (username,)
        ).fetchone()
        if row is None:
            return False
        if not hmac.compare_digest(str(row["password_hash"]), hash_password(password)):
            return False
        try:
            conn.execute(
                "UPDATE users SET last_login = ? WHERE username = ?",
                (_timestamp(datetime.now()), username),
            )
        except sqlite3.Error as exc:
            log.warning("Failed to update last login for %s: %s", username, exc)
        return True

    def get_user_type(self, username: str) -> str | None:
        """The user's type, or ``None`` for an unknown user."""
        row = self._db.connection.execute(
            "SELECT user_type FROM users WHERE username = ?", (username,)
        ).fetchone()
        return None if row is None else row["user_type"]