"""Announcement and relaying of live streams within work orders."""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

log = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _encode(message: dict[str, Any]) -> bytes:
    return json.dumps(
        message, separators=(",", ":"), sort_keys=True, ensure_ascii=False
    ).encode("utf-8")


@dataclass
class StreamInfo:
    """The session publishing a ticket's stream and where it can be watched."""

    publisher: Any
    stream_url: str


class RTMPManager:
    """Tracks one live stream per ticket and tells the other members about it.

    ``work_orders`` needs a ``get_work_order(ticket_id)`` method; sessions need
    ``client_ip``, ``client_port``, ``current_ticket`` and ``send_message``.
    """

    def __init__(self, work_orders: Any, clock_ms: Callable[[], int] = _now_ms) -> None:
        self._work_orders = work_orders
        self._clock_ms = clock_ms
        self._streams: dict[str, StreamInfo] = {}
        self._lock = threading.RLock()
        self.stream_started: list[Callable[[str, str], Any]] = []
        self.stream_stopped: list[Callable[[str], Any]] = []
        self.stream_data_available: list[Callable[[str, bytes], Any]] = []

    def on_stream_started(self, sender: Any, ticket_id: str, stream_url: str) -> None:
        """Record ``sender`` as the ticket's publisher and notify the others."""
        with self._lock:
            order = self._work_orders.get_work_order(ticket_id)
            if order is not None:
                notification = _encode({
                    "type": "rtmp_stream_available",
                    "data": {
                        "ticket_id": ticket_id,
                        "stream_url": stream_url,
                        "publisher_ip": sender.client_ip,
                        "publisher_port": sender.client_port,
                    },
                })
                for client in order.clients:
                    if client is not sender:
                        client.send_message(notification)
            self._streams[ticket_id] = StreamInfo(sender, stream_url)
        for handler in list(self.stream_started):
            handler(ticket_id, stream_url)
        log.debug("RTMP stream started for ticket: %s", ticket_id)

    def on_stream_stopped(self, sender: Any, ticket_id: str) -> bool:
        """End the ticket's stream if ``sender`` publishes it; True if it ended."""
        with self._lock:
            info = self._streams.get(ticket_id)
            if info is None or info.publisher is not sender:
                return False
            order = getattr(sender, "current_ticket", None)
            if order is not None:
                notification = _encode({
                    "type": "rtmp_stream_ended",
                    "data": {"ticket_id": ticket_id, "message": "Stream has ended"},
                })
                for client in order.clients:
                    if client is not sender:
                        client.send_message(notification)
            del self._streams[ticket_id]
        for handler in list(self.stream_stopped):
            handler(ticket_id)
        log.debug("RTMP stream stopped for ticket: %s", ticket_id)
        return True

    def relay_stream_data(self, sender: Any, data: bytes) -> int:
        """Forward stream data from the publisher; returns the number of recipients."""
        payload = bytes(data)
        with self._lock:
            order = getattr(sender, "current_ticket", None)
            if order is None:
                return 0
            ticket_id = order.ticket_id
            info = self._streams.get(ticket_id)
            if info is None or info.publisher is not sender:
                return 0
            encoded = base64.b64encode(payload).decode("latin-1")
            recipients = [client for client in order.clients if client is not sender]
            for client in recipients:
                client.send_message(_encode({
                    "type": "rtmp_stream_data",
                    "data": {
                        "ticket_id": ticket_id,
                        "data_size": len(payload),
                        "stream_data": encoded,
                        "timestamp": self._clock_ms(),
                    },
                }))
        for handler in list(self.stream_data_available):
            handler(ticket_id, payload)
        return len(recipients)

    def is_ticket_streaming(self, ticket_id: str) -> bool:
        """True while the ticket has a live stream."""
        with self._lock:
            return ticket_id in self._streams

    def get_stream_url(self, ticket_id: str) -> str | None:
        """URL of the ticket's stream, or ``None`` if it has none."""
        with self._lock:
            info = self._streams.get(ticket_id)
            return None if info is None else info.stream_url