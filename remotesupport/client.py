"""Factory-side client: login, registration and the server connection."""

from __future__ import annotations

import enum
import json
import logging
import socket
from collections.abc import Callable
from typing import Any

from .protocol import FrameDecoder, pack_message

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8888
READ_SIZE = 65536


class InvalidServerMessageError(ValueError):
    """Raised when the server sends a frame that is not valid JSON."""


class Page(enum.Enum):
    """Screens the client can show."""

    LOGIN = "login"
    REGISTER = "register"
    MAIN = "main"


def _encode(message: dict[str, Any]) -> bytes:
    return json.dumps(
        message, separators=(",", ":"), sort_keys=True, ensure_ascii=False
    ).encode("utf-8")


class FactoryClient:
    """Talks to the support server and tracks which page is shown.

    ``write`` receives framed bytes when no socket is connected. Listeners in
    ``login_result`` and ``register_result`` get the success flag; listeners
    in ``disconnected`` get the client.
    """

    def __init__(self, write: Callable[[bytes], Any] | None = None) -> None:
        self._write = write
        self._sock: socket.socket | None = None
        self._decoder = FrameDecoder()
        self.page = Page.LOGIN
        self.login_result: list[Callable[[bool], Any]] = []
        self.register_result: list[Callable[[bool], Any]] = []
        self.disconnected: list[Callable[[FactoryClient], Any]] = []

    def connect(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Open the connection to the server."""
        self._sock = socket.create_connection((host, port))
        self._write = self._sock.sendall
        log.debug("Connected to %s:%d", host, port)

    def switch_to_page(self, page: Page) -> None:
        """Show another page."""
        log.debug("Switching to page: %s", page.value)
        self.page = page

    def send_message(self, data: bytes) -> bool:
        """Frame and send ``data``; False when there is no connection."""
        if self._write is None:
            return False
        self._write(pack_message(data))
        return True

    def feed(self, data: bytes) -> list[str]:
        """Process received bytes; returns the types of messages handled."""
        handled = []
        for message in self._decoder.feed(data):
            try:
                handled.append(self.handle_message(message))
            except InvalidServerMessageError as exc:
                log.warning("%s", exc)
        return handled

    def receive(self, bufsize: int = READ_SIZE) -> list[str]:
        """Read once from the socket and handle what arrived."""
        if self._sock is None:
            raise ConnectionError("not connected")
        data = self._sock.recv(bufsize)
        if not data:
            self._on_disconnected()
            return []
        return self.feed(data)

    def handle_message(self, data: bytes) -> str:
        """Handle one server message; returns its type."""
        try:
            parsed = json.loads(bytes(data).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidServerMessageError(f"Invalid JSON message: {data!r}") from exc
        if not isinstance(parsed, dict):
            return ""
        kind = parsed.get("type")
        kind = kind if isinstance(kind, str) else ""
        body = parsed.get("data")
        success = isinstance(body, dict) and body.get("success") is True
        if kind == "register_result":
            for handler in list(self.register_result):
                handler(success)
        elif kind == "login_result":
            if success:
                self.switch_to_page(Page.MAIN)
            for handler in list(self.login_result):
                handler(success)
        return kind

    def login(self, username: str, password: str) -> bool:
        """Send a login request; False if a field is empty or nothing was sent."""
        if not username or not password:
            return False
        return self.send_message(_encode({
            "type": "login",
            "data": {"username": username, "password": password},
        }))

    def register(self, username: str, password: str) -> bool:
        """Send a registration request and return to the login page."""
        if not username or not password:
            return False
        sent = self.send_message(_encode({
            "type": "register",
            "data": {"username": username, "password": password, "user_type": "client"},
        }))
        self.switch_to_page(Page.LOGIN)
        return sent

    def logout(self) -> None:
        """Return to the login page."""
        self.switch_to_page(Page.LOGIN)

    def _on_disconnected(self) -> None:
        self.close()
        for handler in list(self.disconnected):
            handler(self)

    def close(self) -> None:
        """Close the connection to the server."""
        sock, self._sock = self._sock, None
        if sock is not None:
            self._write = None
            sock.close()