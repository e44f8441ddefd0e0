"""Forwarding of chat messages and media within a work order."""

from __future__ import annotations

import logging
from typing import Any

log = logging.getLogger(__name__)


def _forward(sender: Any, payload: bytes) -> int:
    order = getattr(sender, "current_ticket", None)
    if order is None:
        log.debug("order not found!")
        return 0
    recipients = [client for client in order.clients if client is not sender]
    for client in recipients:
        client.send_message(payload)
    return len(recipients)


class MessageRouter:
    """Passes text messages to the other members of the sender's work order."""

    def route_text_message(self, sender: Any, message: bytes) -> int:
        """Forward ``message``; returns how many sessions received it."""
        return _forward(sender, message)


class MediaRelay:
    """Passes media data to the other members of the sender's work order."""

    def relay_media(self, sender: Any, media_data: bytes) -> int:
        """Forward ``media_data``; returns how many sessions received it."""
        return _forward(sender, media_data)