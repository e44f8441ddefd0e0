"""A minimal RTMP listener: handshake, publish detection and session tracking."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from .streammanager import StreamAlreadyPublishedError, StreamManager

log = logging.getLogger(__name__)

DEFAULT_PORT = 1935
SESSION_TIMEOUT = 30.0
RTMP_VERSION = 3
HANDSHAKE_BLOCK = 1536
HANDSHAKE_SIZE = 1 + HANDSHAKE_BLOCK
READ_SIZE = 65536


class RTMPSession:
    """Protocol state of one RTMP connection, independent of its transport.

    ``write`` receives every byte string the session sends back.
    """

    def __init__(self, stream_manager: StreamManager, write: Callable[[bytes], Any]) -> None:
        self._stream_manager = stream_manager
        self._write = write
        self._buffer = b""
        self._handshake_done = False
        self._is_publishing = False
        self.app_name = ""
        self.stream_name = ""
        self.session_closed: list[Callable[[RTMPSession], Any]] = []
        self.stream_published: list[Callable[[str], Any]] = []
        self.stream_unpublished: list[Callable[[str], Any]] = []

    @property
    def handshake_done(self) -> bool:
        """True once the handshake has been answered."""
        return self._handshake_done

    @property
    def is_publishing(self) -> bool:
        """True once the peer has asked to publish."""
        return self._is_publishing

    @property
    def buffered(self) -> int:
        """Number of received bytes not yet consumed."""
        return len(self._buffer)

    def feed(self, data: bytes) -> None:
        """Process bytes received from the peer."""
        self._buffer += bytes(data)
        if not self._handshake_done:
            self._handle_handshake()
        else:
            self._handle_message()

    def _handle_handshake(self) -> None:
        if len(self._buffer) < HANDSHAKE_SIZE:
            return
        c1 = self._buffer[1:HANDSHAKE_SIZE]
        self._write(bytes([RTMP_VERSION]) + c1 + c1)
        self._buffer = self._buffer[HANDSHAKE_SIZE:]
        self._handshake_done = True
        log.debug("RTMP handshake completed")

    def _handle_message(self) -> None:
        if b"publish" not in self._buffer:
            return
        already = self._is_publishing
        self._is_publishing = True
        if already or not self.stream_name:
            return
        try:
            self._stream_manager.publish_stream(self.stream_name, self)
        except StreamAlreadyPublishedError as exc:
            log.warning("%s", exc)
            return
        for handler in list(self.stream_published):
            handler(self.stream_name)

    def disconnected(self) -> None:
        """Tear down after the connection closed: withdraw any published stream."""
        if self._is_publishing and self.stream_name:
            self._stream_manager.unpublish_stream(self.stream_name, self)
            for handler in list(self.stream_unpublished):
                handler(self.stream_name)
        for handler in list(self.session_closed):
            handler(self)


class RTMPServer:
    """Accepts RTMP connections and runs an :class:`RTMPSession` for each."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        host: str = "0.0.0.0",
        stream_manager: StreamManager | None = None,
    ) -> None:
        self.host = host
        self._requested_port = port
        self.stream_manager = stream_manager if stream_manager is not None else StreamManager()
        self.session_timeout = SESSION_TIMEOUT
        self._server: asyncio.base_events.Server | None = None
        self._sessions: dict[RTMPSession, asyncio.StreamWriter] = {}
        self.stream_published: list[Callable[[str], Any]] = []
        self.stream_unpublished: list[Callable[[str], Any]] = []

    @property
    def port(self) -> int:
        """The bound port while listening, otherwise the configured one."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._requested_port

    @property
    def sessions(self) -> list[RTMPSession]:
        """Sessions whose connections are open."""
        return list(self._sessions)

    async def start(self) -> int:
        """Start listening; returns the bound port."""
        if self._server is None:
            self._server = await asyncio.start_server(
                self._handle_connection, self.host, self._requested_port
            )
            log.debug("RTMP Server started on port %d", self.port)
        return self.port

    async def stop(self) -> None:
        """Stop listening and close every open connection."""
        server, self._server = self._server, None
        if server is not None:
            server.close()
        writers = list(self._sessions.values())
        self._sessions.clear()
        for writer in writers:
            writer.close()
        if server is not None:
            await server.wait_closed()
        log.debug("RTMP Server stopped")

    def _forward_published(self, stream_name: str) -> None:
        for handler in list(self.stream_published):
            handler(stream_name)

    def _forward_unpublished(self, stream_name: str) -> None:
        for handler in list(self.stream_unpublished):
            handler(stream_name)

    def _on_session_closed(self, session: RTMPSession) -> None:
        self._sessions.pop(session, None)
        log.debug("RTMP session disconnected")

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        session = RTMPSession(self.stream_manager, writer.write)
        session.session_closed.append(self._on_session_closed)
        session.stream_published.append(self._forward_published)
        session.stream_unpublished.append(self._forward_unpublished)
        self._sessions[session] = writer
        log.debug("New RTMP connection from: %s", writer.get_extra_info("peername"))
        try:
            while True:
                try:
                    data = await asyncio.wait_for(reader.read(READ_SIZE), self.session_timeout)
                except asyncio.TimeoutError:
                    log.debug("RTMP session timeout")
                    break
                if not data:
                    break
                session.feed(data)
                await writer.drain()
        except ConnectionError as exc:
            log.debug("RTMP connection error: %s", exc)
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
            session.disconnected()