"""TCP front end of the support server and its command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import sqlite3
from typing import Any

from .clientsession import ClientSession, Services
from .database import Database
from .devicedao import DeviceDAO
from .deviceproxy import DeviceProxy
from .filerouter import FileRouter
from .relay import MessageRouter
from .rtmpmanager import RTMPManager
from .userdao import UserDAO
from .workorderdao import WorkOrderDAO
from .workordermanager import WorkOrderManager

log = logging.getLogger(__name__)

DEFAULT_PORT = 8888
DEFAULT_HOST = "0.0.0.0"
DEFAULT_DB_DIR = "Db"
READ_SIZE = 65536


def _encode(message: dict[str, Any]) -> bytes:
    return json.dumps(
        message, separators=(",", ":"), sort_keys=True, ensure_ascii=False
    ).encode("utf-8")


def build_services(database: Database) -> Services:
    """Create every server component on top of an initialised database."""
    work_orders = WorkOrderManager(WorkOrderDAO(database))
    return Services(
        work_orders=work_orders,
        message_router=MessageRouter(),
        device_proxy=DeviceProxy(database),
        file_router=FileRouter(),
        rtmp_manager=RTMPManager(work_orders),
        user_dao=UserDAO(database),
        device_dao=DeviceDAO(database),
    )


class ServerCore:
    """Accepts client connections and broadcasts device readings to them."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        host: str = DEFAULT_HOST,
        services: Services | None = None,
    ) -> None:
        self.host = host
        self._requested_port = port
        self.services = services if services is not None else Services()
        self._server: Any = None
        self._clients: list[ClientSession] = []
        self._writers: dict[ClientSession, asyncio.StreamWriter] = {}
        self._device_task: asyncio.Task[None] | None = None
        proxy = self.services.device_proxy
        if proxy is not None:
            proxy.device_data_updated.append(self.broadcast_device_data)

    @property
    def port(self) -> int:
        """The bound port while listening, otherwise the configured one."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._requested_port

    @property
    def clients(self) -> list[ClientSession]:
        """Sessions of the clients currently connected."""
        return list(self._clients)

    async def start(self) -> int:
        """Start listening and the device updates; returns the bound port."""
        if self._server is None:
            self._server = await asyncio.start_server(
                self._handle_connection, self.host, self._requested_port
            )
            log.info("Server started on port %d", self.port)
        proxy = self.services.device_proxy
        if proxy is not None and self._device_task is None:
            self._device_task = asyncio.create_task(proxy.run())
        return self.port

    async def close(self) -> None:
        """Stop the device updates, stop listening and drop every client."""
        task, self._device_task = self._device_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        server, self._server = self._server, None
        if server is not None:
            server.close()
        for writer in list(self._writers.values()):
            writer.close()
        if server is not None:
            await server.wait_closed()

    def broadcast_device_data(self, device_id: str, data: dict[str, Any]) -> int:
        """Send a realtime update to every connected client; returns how many."""
        payload = _encode({"type": "device_realtime_update", "data": data})
        sent = 0
        for client in list(self._clients):
            writer = self._writers.get(client)
            if writer is None or writer.is_closing():
                continue
            if client.send_message(payload):
                sent += 1
        log.debug("Broadcasted device data: %s", device_id)
        return sent

    def _on_disconnected(self, session: ClientSession) -> None:
        if session in self._clients:
            self._clients.remove(session)
        self._writers.pop(session, None)
        log.debug("Client disconnected. Remaining clients: %d", len(self._clients))

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername") or ("", 0)
        session = ClientSession(
            writer.write, str(peer[0]), int(peer[1]), services=self.services
        )
        session.disconnected.append(self._on_disconnected)
        self._clients.append(session)
        self._writers[session] = writer
        log.debug("New client connected: %s", peer[0])
        try:
            while True:
                data = await reader.read(READ_SIZE)
                if not data:
                    break
                session.feed(data)
                await writer.drain()
        except ConnectionError as exc:
            log.debug("Client connection error: %s", exc)
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
            session.on_disconnected()


def _port(text: str) -> int:
    try:
        value = int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid port: {text}") from exc
    if not 0 <= value <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {text}")
    return value


async def _serve(server: ServerCore) -> None:
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.close()


def main(argv: list[str] | None = None) -> int:
    """Run the remote support server until interrupted."""
    parser = argparse.ArgumentParser(description="Remote support server")
    parser.add_argument("port", nargs="?", type=_port, default=DEFAULT_PORT)
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--db-dir", default=DEFAULT_DB_DIR)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    database = Database()
    try:
        if database.initialize(args.db_dir) is False:
            log.critical("Cannot initialize database. Exiting.")
            return 1
    except (sqlite3.Error, OSError) as exc:
        log.critical("Cannot initialize database (%s). Exiting.", exc)
        return 1

    try:
        server = ServerCore(args.port, args.host, build_services(database))
        log.info("Remote Support Server started on port %d", args.port)
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(_serve(server))
    finally:
        database.close()
    return 0