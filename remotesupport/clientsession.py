"""One connected client: decodes its framed JSON requests and serves them."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .deviceproxy import DeviceProxy
from .filerouter import FileRouter, FileTransferError
from .protocol import FrameDecoder, pack_message
from .relay import MessageRouter
from .rtmpmanager import RTMPManager
from .userdao import RegistrationError, UserDAO
from .workorderdao import WorkOrderStoreError
from .workordermanager import WorkOrderManager

log = logging.getLogger(__name__)

RTMP_URL_TEMPLATE = "rtmp://localhost/live/{ticket_id}_{stream_name}"


class MessageError(ValueError):
    """Raised for a request that cannot be understood."""


class InvalidMessageError(MessageError):
    """Raised when a frame does not hold valid JSON."""


class UnknownMessageTypeError(MessageError):
    """Raised when a request has a type the server does not handle."""


class ServiceUnavailableError(RuntimeError):
    """Raised when a request needs a service the session was not given."""


@dataclass
class Services:
    """The server components a session hands requests to."""

    work_orders: WorkOrderManager | None = None
    message_router: MessageRouter | None = None
    device_proxy: DeviceProxy | None = None
    file_router: FileRouter | None = None
    rtmp_manager: RTMPManager | None = None
    user_dao: UserDAO | None = None
    device_dao: Any = None


_RECOVERABLE = (
    MessageError,
    LookupError,
    ValueError,
    FileTransferError,
    WorkOrderStoreError,
    ServiceUnavailableError,
)


def _encode(message: dict[str, Any]) -> bytes:
    return json.dumps(
        message, separators=(",", ":"), sort_keys=True, ensure_ascii=False
    ).encode("utf-8")


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class ClientSession:
    """Protocol state of one client connection, independent of its transport.

    ``write`` receives every framed byte string sent to the client. Listeners
    in ``disconnected``, ``ready_for_media`` and ``device_control_request``
    are called with ``(session)``, ``(ticket_id)`` and ``(session, data)``.
    """

    def __init__(
        self,
        write: Callable[[bytes], Any],
        client_ip: str = "",
        client_port: int = 0,
        services: Services | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._write = write
        self.client_ip = client_ip
        self.client_port = client_port
        self.services = services if services is not None else Services()
        self._clock = clock
        self._decoder = FrameDecoder()
        self.connected = True
        self.current_ticket: Any = None
        self.rtmp_stream_url = ""
        self.stream_start_time: datetime | None = None
        self._is_streaming = False
        self.disconnected: list[Callable[[ClientSession], Any]] = []
        self.ready_for_media: list[Callable[[str], Any]] = []
        self.device_control_request: list[Callable[[ClientSession, dict[str, Any]], Any]] = []
        self._handlers: dict[str, Callable[[dict[str, Any], bytes], None]] = {
            "create_ticket": self._create_ticket,
            "join_ticket": self._join_ticket,
            "text_msg": self._text_msg,
            "request_device_data": self._request_device_data,
            "deviceControl": self._device_control,
            "control_command": self._control_command,
            "file_upload_start": self._file_upload_start,
            "file_upload_chunk": self._file_upload_chunk,
            "file_download": self._file_download,
            "accept_ticket": self._accept_ticket,
            "complete_ticket": self._complete_ticket,
            "register": self._register,
            "login": self._login,
            "get_device_list": self._get_device_list,
            "rtmp_stream_start": self._rtmp_stream_start,
            "rtmp_stream_stop": self._rtmp_stream_stop,
            "rtmp_stream_data": self._rtmp_stream_data,
        }

    @property
    def is_streaming(self) -> bool:
        """True while this client publishes a stream."""
        return self._is_streaming

    def send_message(self, data: bytes) -> bool:
        """Frame and send ``data``; False if the connection is closed."""
        if not self.connected:
            return False
        self._write(pack_message(data))
        return True

    def feed(self, data: bytes) -> list[str]:
        """Process received bytes; returns the types of requests served."""
        served = []
        for message in self._decoder.feed(data):
            try:
                served.append(self.handle_message(message))
            except _RECOVERABLE as exc:
                log.warning("Request from %s not served: %s", self.client_ip, exc)
        return served

    def handle_message(self, data: bytes) -> str:
        """Serve one request; returns its type."""
        try:
            parsed = json.loads(bytes(data).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidMessageError(f"Invalid JSON message: {data!r}") from exc
        obj = _obj(parsed)
        kind = _str(obj.get("type"))
        handler = self._handlers.get(kind)
        if handler is None:
            raise UnknownMessageTypeError(f"Unknown message type: {kind}")
        handler(_obj(obj.get("data")), bytes(data))
        return kind

    def on_disconnected(self) -> None:
        """Handle the end of the connection."""
        self.connected = False
        for handler in list(self.disconnected):
            handler(self)
        if self._is_streaming and self.current_ticket is not None:
            self._is_streaming = False
            rtmp = self.services.rtmp_manager
            if rtmp is not None:
                rtmp.on_stream_stopped(self, self.current_ticket.ticket_id)

    def _require(self, name: str) -> Any:
        service = getattr(self.services, name)
        if service is None:
            raise ServiceUnavailableError(f"No {name} configured")
        return service

    def _reply(self, kind: str, data: dict[str, Any]) -> None:
        self.send_message(_encode({"type": kind, "data": data}))

    def _in_ticket(self, ticket_id: str) -> bool:
        return self.current_ticket is not None and self.current_ticket.ticket_id == ticket_id

    def _create_ticket(self, data: dict[str, Any], raw: bytes) -> None:
        manager = self._require("work_orders")
        devices = data.get("device_ids")
        device_ids = [_str(value) for value in devices] if isinstance(devices, list) else []
        try:
            ticket_id = manager.create_ticket(self, device_ids, _str(data.get("username")))
        except WorkOrderStoreError as exc:
            log.warning("Ticket could not be created: %s", exc)
            ticket_id = ""
        self._reply("ticket_created", {"ticket_id": ticket_id})

    def _join_ticket(self, data: dict[str, Any], raw: bytes) -> None:
        manager = self._require("work_orders")
        ticket_id = _str(data.get("ticket_id"))
        manager.join_ticket(ticket_id, self)
        self._reply("joined_ticket", {"ticket_id": ticket_id})
        for handler in list(self.ready_for_media):
            handler(ticket_id)

    def _text_msg(self, data: dict[str, Any], raw: bytes) -> None:
        self._require("message_router").route_text_message(self, raw)

    def _request_device_data(self, data: dict[str, Any], raw: bytes) -> None:
        self._require("device_proxy").request_data(self, data)

    def _device_control(self, data: dict[str, Any], raw: bytes) -> None:
        for handler in list(self.device_control_request):
            handler(self, data)

    def _control_command(self, data: dict[str, Any], raw: bytes) -> None:
        self._require("device_proxy").receive_control_command(data)

    def _file_upload_start(self, data: dict[str, Any], raw: bytes) -> None:
        self._require("file_router").handle_file_upload_start(self, data)

    def _file_upload_chunk(self, data: dict[str, Any], raw: bytes) -> None:
        self._require("file_router").handle_file_upload_chunk(self, data)

    def _file_download(self, data: dict[str, Any], raw: bytes) -> None:
        self._require("file_router").handle_file_download_request(self, data)

    def _accept_ticket(self, data: dict[str, Any], raw: bytes) -> None:
        self._require("work_orders").accept_ticket(
            _str(data.get("ticket_id")),
            _str(data.get("expert_username")),
            self.client_ip,
            self.client_port,
        )

    def _complete_ticket(self, data: dict[str, Any], raw: bytes) -> None:
        self._require("work_orders").complete_ticket(
            _str(data.get("ticket_id")),
            _str(data.get("description")),
            _str(data.get("solution")),
        )

    def _register(self, data: dict[str, Any], raw: bytes) -> None:
        users = self._require("user_dao")
        try:
            users.register_user(
                _str(data.get("username")),
                _str(data.get("password")),
                _str(data.get("user_type")),
                self._clock(),
            )
        except RegistrationError as exc:
            log.warning("Registration failed: %s", exc)
            success = False
        else:
            success = True
        message = (
            "Registration successful"
            if success
            else "Registration failed. Username may already exist."
        )
        self._reply("register_result", {"success": success, "message": message})

    def _login(self, data: dict[str, Any], raw: bytes) -> None:
        users = self._require("user_dao")
        username = _str(data.get("username"))
        secret = _str(data.get("password"))
        if not username or not secret:
            success, message = False, "Username or password cannot be empty"
        elif not users.user_exists(username):
            success, message = False, "User does not exist"
        elif not users.verify_user(username, secret):
            success, message = False, "Incorrect password"
        else:
            success, message = True, "Login successful"
        self._reply("login_result", {"success": success, "message": message})

    def _get_device_list(self, data: dict[str, Any], raw: bytes) -> None:
        dao = self._require("device_dao")
        devices = []
        for device in dao.get_all_devices():
            device_type = getattr(device, "device_type", None)
            if device_type is None:
                device_type = getattr(device, "type", "")
            realtime = dao.get_device_realtime(device.device_id) or {}
            entry = {
                "device_id": device.device_id,
                "name": device.name,
                "type": device_type,
                "location": device.location,
                "online_status": device.online_status,
            }
            for key in ("pressure", "temperature", "status"):
                if key in realtime:
                    entry[key] = realtime[key]
            devices.append(entry)
        response = {"type": "device_list", "data": {"devices": devices}}
        self.send_message(
            json.dumps(response, indent=4, ensure_ascii=False).encode("utf-8")
        )

    def _rtmp_stream_start(self, data: dict[str, Any], raw: bytes) -> None:
        ticket_id = _str(data.get("ticket_id"))
        if not self._in_ticket(ticket_id):
            return
        rtmp = self._require("rtmp_manager")
        stream_url = RTMP_URL_TEMPLATE.format(
            ticket_id=ticket_id, stream_name=_str(data.get("stream_name"))
        )
        self.rtmp_stream_url = stream_url
        self._is_streaming = True
        self.stream_start_time = self._clock()
        rtmp.on_stream_started(self, ticket_id, stream_url)
        self._reply("rtmp_stream_started", {
            "ticket_id": ticket_id,
            "stream_url": stream_url,
            "message": "Stream started successfully",
        })
        log.debug("RTMP stream started for ticket: %s by client: %s", ticket_id, self.client_ip)

    def _rtmp_stream_stop(self, data: dict[str, Any], raw: bytes) -> None:
        ticket_id = _str(data.get("ticket_id"))
        if not (self._in_ticket(ticket_id) and self._is_streaming):
            return
        rtmp = self._require("rtmp_manager")
        self._is_streaming = False
        rtmp.on_stream_stopped(self, ticket_id)
        self._reply("rtmp_stream_stopped", {
            "ticket_id": ticket_id,
            "message": "Stream stopped successfully",
        })
        log.debug("RTMP stream stopped for ticket: %s by client: %s", ticket_id, self.client_ip)

    def _rtmp_stream_data(self, data: dict[str, Any], raw: bytes) -> None:
        ticket_id = _str(data.get("ticket_id"))
        try:
            stream_data = base64.b64decode(_str(data.get("stream_data")))
        except (binascii.Error, ValueError):
            stream_data = b""
        if self._in_ticket(ticket_id) and self._is_streaming:
            self._require("rtmp_manager").relay_stream_data(self, stream_data)