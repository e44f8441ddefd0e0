"""Registry of published live streams and their subscribers."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

log = logging.getLogger(__name__)


class StreamAlreadyPublishedError(Exception):
    """Raised when a stream name is already taken by a publisher."""


class StreamManager:
    """Keeps one publisher and a list of subscribers per stream name."""

    def __init__(self) -> None:
        self._publishers: dict[str, Any] = {}
        self._subscribers: dict[str, list[Any]] = {}
        self._lock = threading.RLock()
        self.stream_data_received: list[Callable[[str, bytes], Any]] = []

    def publish_stream(self, stream_name: str, publisher: Any) -> None:
        """Register ``publisher`` for ``stream_name``."""
        with self._lock:
            if stream_name in self._publishers:
                raise StreamAlreadyPublishedError(f"Stream already published: {stream_name}")
            self._publishers[stream_name] = publisher
        log.debug("Stream published: %s", stream_name)

    def unpublish_stream(self, stream_name: str, publisher: Any) -> bool:
        """Remove the stream if ``publisher`` owns it; its subscribers are dropped."""
        with self._lock:
            if stream_name not in self._publishers or self._publishers[stream_name] is not publisher:
                return False
            del self._publishers[stream_name]
            if stream_name in self._subscribers:
                self._subscribers[stream_name].clear()
        log.debug("Stream unpublished: %s", stream_name)
        return True

    def add_subscriber(self, stream_name: str, subscriber: Any) -> bool:
        """Subscribe to a published stream; False if it is not published."""
        with self._lock:
            if stream_name not in self._publishers:
                return False
            self._subscribers.setdefault(stream_name, []).append(subscriber)
        log.debug("Subscriber added to stream: %s", stream_name)
        return True

    def remove_subscriber(self, stream_name: str, subscriber: Any) -> bool:
        """Drop one subscription; False if there was none."""
        with self._lock:
            subscribers = self._subscribers.get(stream_name)
            if not subscribers or subscriber not in subscribers:
                return False
            subscribers.remove(subscriber)
        log.debug("Subscriber removed from stream: %s", stream_name)
        return True

    def subscribers(self, stream_name: str) -> list[Any]:
        """The current subscribers of a stream."""
        with self._lock:
            return list(self._subscribers.get(stream_name, ()))

    def is_stream_published(self, stream_name: str) -> bool:
        """True while a publisher owns the stream name."""
        with self._lock:
            return stream_name in self._publishers

    def get_published_streams(self) -> list[str]:
        """Names of all published streams in sorted order."""
        with self._lock:
            return sorted(self._publishers)