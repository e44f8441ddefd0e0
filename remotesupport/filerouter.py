"""Chunked file upload and download between members of a work order."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO

log = logging.getLogger(__name__)

CHUNK_SIZE = 65536
MIN_CHUNK_SIZE = 1024
MAX_CHUNK_SIZE = 1024 * 1024
DEFAULT_UPLOAD_ROOT = "uploads"


class FileTransferError(Exception):
    """Raised when an upload or download request cannot be served."""


class InvalidTransferRequest(FileTransferError, ValueError):
    """Raised for a request with missing or malformed fields."""


class NoActiveUploadError(FileTransferError):
    """Raised for a chunk from a session that has no upload in progress."""


class UnknownFileError(FileTransferError, LookupError):
    """Raised when a requested file was never uploaded."""


@dataclass
class UploadContext:
    """State of one upload, kept afterwards to serve downloads."""

    file_id: str
    file_name: str
    file_size: int
    ticket_id: str
    file_path: Path
    client: Any
    upload_time: datetime
    received_bytes: int = 0
    file: BinaryIO | None = field(default=None, repr=False)


def _encode(message: dict[str, Any]) -> bytes:
    return json.dumps(
        message, separators=(",", ":"), sort_keys=True, ensure_ascii=False
    ).encode("utf-8")


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


class FileRouter:
    """Receives uploaded files in chunks and streams them back on request.

    Sessions need ``send_message`` and ``current_ticket``. Listeners in
    ``file_uploaded`` are called with ``(sender, notification)`` after an
    upload completes; by default the notification goes to the other members
    of the sender's work order.
    """

    def __init__(
        self,
        upload_root: str | Path = DEFAULT_UPLOAD_ROOT,
        chunk_size: int = CHUNK_SIZE,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.upload_root = Path(upload_root)
        self.chunk_size = max(MIN_CHUNK_SIZE, min(chunk_size, MAX_CHUNK_SIZE))
        self._clock = clock
        self._uploads: dict[Any, UploadContext] = {}
        self._files: dict[str, UploadContext] = {}
        self.file_uploaded: list[Callable[[Any, dict[str, Any]], Any]] = [
            self.new_file_uploaded
        ]

    def generate_file_id(self) -> str:
        """A new unique file id."""
        return str(uuid.uuid4())

    def handle_file_upload_start(self, sender: Any, data: dict[str, Any]) -> UploadContext:
        """Open the target file for a new upload and tell the sender its file id."""
        file_name = _as_str(data.get("file_name"))
        file_size = _as_int(data.get("file_size"))
        ticket_id = _as_str(data.get("ticket_id"))
        if not file_name or file_size <= 0 or not ticket_id:
            raise InvalidTransferRequest("Invalid upload start request from client")

        file_id = self.generate_file_id()
        directory = self.upload_root / ticket_id
        file_path = directory / file_name
        try:
            directory.mkdir(parents=True, exist_ok=True)
            handle = file_path.open("wb")
        except OSError as exc:
            raise FileTransferError(f"Cannot create file: {file_path}") from exc

        previous = self._uploads.get(sender)
        if previous is not None and previous.file is not None:
            previous.file.close()

        ctx = UploadContext(
            file_id=file_id,
            file_name=file_name,
            file_size=file_size,
            ticket_id=ticket_id,
            file_path=file_path,
            client=sender,
            upload_time=self._clock(),
            file=handle,
        )
        self._uploads[sender] = ctx
        sender.send_message(_encode({
            "type": "upload_started",
            "data": {
                "file_id": file_id,
                "message": "Upload started. Use this fileId for chunks.",
            },
        }))
        log.debug("Upload session started: %s (fileId: %s)", file_name, file_id)
        return ctx

    def handle_file_upload_chunk(
        self, sender: Any, data: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Write one chunk; returns the completion notice after the last one."""
        file_id = _as_str(data.get("file_id"))
        ctx = self._uploads.get(sender)
        if ctx is None:
            raise NoActiveUploadError(
                "Received chunk from client with no active upload session"
            )
        if ctx.file is None or ctx.file.closed:
            raise FileTransferError("File not open for writing.")
        if ctx.file_id != file_id:
            raise InvalidTransferRequest("fileId mismatch for client upload")
        try:
            chunk = base64.b64decode(_as_str(data.get("chunk_data")))
        except (binascii.Error, ValueError):
            chunk = b""
        if not chunk:
            raise InvalidTransferRequest("Invalid chunk data")
        try:
            ctx.file.write(chunk)
        except OSError as exc:
            raise FileTransferError(f"Failed to write chunk to file: {ctx.file_path}") from exc
        ctx.received_bytes += len(chunk)

        if data.get("is_last") is not True:
            return None

        ctx.file.close()
        ctx.file = None
        self._files[f"{ctx.ticket_id}/{ctx.file_id}"] = ctx
        del self._uploads[sender]

        notify = {
            "type": "file_uploaded",
            "data": {
                "file_id": ctx.file_id,
                "file_name": ctx.file_name,
                "file_size": ctx.file_size,
                "ticket_id": ctx.ticket_id,
            },
        }
        for handler in list(self.file_uploaded):
            handler(sender, notify)
        log.debug("Upload completed: %s saved as %s", ctx.file_name, ctx.file_path)
        return notify

    def handle_file_download_request(self, sender: Any, data: dict[str, Any]) -> int:
        """Send a stored file's metadata then its content in chunks; returns bytes sent."""
        file_id = _as_str(data.get("file_id"))
        ticket_id = _as_str(data.get("ticket_id"))
        if not file_id or not ticket_id:
            raise InvalidTransferRequest(
                "Download request missing file_id or ticket_id from client"
            )
        ctx = self._files.get(f"{ticket_id}/{file_id}")
        if ctx is None:
            raise UnknownFileError(
                f"Requested file not found: {file_id} for ticket {ticket_id}"
            )
        try:
            handle = ctx.file_path.open("rb")
        except OSError as exc:
            raise FileTransferError(f"Cannot open file for reading: {ctx.file_path}") from exc

        total = 0
        with handle:
            sender.send_message(_encode({
                "type": "file_meta",
                "data": {
                    "file_id": ctx.file_id,
                    "file_name": ctx.file_name,
                    "file_size": ctx.file_size,
                    "ticket_id": ctx.ticket_id,
                },
            }))
            chunk = handle.read(self.chunk_size)
            while chunk:
                following = handle.read(self.chunk_size)
                sender.send_message(_encode({
                    "type": "file_chunk",
                    "data": {
                        "data": base64.b64encode(chunk).decode("ascii"),
                        "is_last": not following,
                    },
                }))
                total += len(chunk)
                chunk = following
        log.debug("Successfully streamed file: %s Total sent: %d bytes", ctx.file_name, total)
        return total

    def new_file_uploaded(self, sender: Any, notify: dict[str, Any]) -> int:
        """Tell the other members of the sender's work order about a new file."""
        order = getattr(sender, "current_ticket", None)
        if order is None:
            log.debug("order not found!")
            return 0
        payload = _encode(notify)
        recipients = [client for client in order.clients if client is not sender]
        for client in recipients:
            client.send_message(payload)
        return len(recipients)