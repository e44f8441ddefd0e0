"""Bookkeeping of open work orders and the sessions that take part in them."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from .protocol import WorkOrderStatus
from .workorder import WorkOrder
from .workorderdao import WorkOrderDAO, WorkOrderNotFoundError, WorkOrderStoreError

log = logging.getLogger(__name__)


class TicketNotFoundError(LookupError):
    """Raised when no open work order has the given ticket id."""


class TicketStateError(ValueError):
    """Raised when a work order is not in the state an action requires."""


class WorkOrderManager:
    """Creates, joins, accepts and closes work orders.

    Sessions passed in need ``client_ip``, ``client_port`` and a writable
    ``current_ticket`` attribute.
    """

    def __init__(
        self, dao: WorkOrderDAO, clock: Callable[[], datetime] = datetime.now
    ) -> None:
        self._dao = dao
        self._clock = clock
        self._tickets: dict[str, WorkOrder] = {}
        self._lock = threading.RLock()
        self.ticket_created: list[Callable[[str, str], Any]] = []
        self.ticket_closed: list[Callable[[str], Any]] = []

    def _emit_created(self, ticket_id: str, devices: str) -> None:
        for handler in list(self.ticket_created):
            handler(ticket_id, devices)

    def _emit_closed(self, ticket_id: str) -> None:
        for handler in list(self.ticket_closed):
            handler(ticket_id)

    def create_ticket(
        self, creator: Any, device_ids: Iterable[str], client_username: str
    ) -> str:
        """Open a work order for ``creator`` and store it; returns its ticket id."""
        devices = list(device_ids)
        with self._lock:
            order = WorkOrder(devices, created_at=self._clock())
            self._dao.insert_work_order(
                order.ticket_id,
                client_username,
                creator.client_ip,
                creator.client_port,
                order.created_at,
                devices,
            )
            self._tickets[order.ticket_id] = order
        self._emit_created(order.ticket_id, ",".join(devices))
        return order.ticket_id

    def join_ticket(self, ticket_id: str, client: Any) -> WorkOrder:
        """Add ``client`` to an open work order and make it the client's ticket."""
        with self._lock:
            order = self._tickets.get(ticket_id)
            if order is None:
                raise TicketNotFoundError(f"Ticket not found: {ticket_id}")
            order.add_client(client)
            client.current_ticket = order
            return order

    def leave_ticket(self, client: Any) -> None:
        """Remove ``client`` from its ticket; an emptied ticket is closed."""
        closed = None
        with self._lock:
            order = getattr(client, "current_ticket", None)
            if order is None:
                return
            order.remove_client(client)
            client.current_ticket = None
            if order.is_empty():
                self._tickets.pop(order.ticket_id, None)
                closed = order.ticket_id
        if closed is not None:
            self._emit_closed(closed)

    def destroy_ticket(self, ticket_id: str) -> None:
        """Drop an open work order; unknown ids are ignored."""
        with self._lock:
            order = self._tickets.pop(ticket_id, None)
        if order is not None:
            self._emit_closed(ticket_id)

    def get_work_order(self, ticket_id: str) -> WorkOrder | None:
        """The open work order with this id, or ``None``."""
        with self._lock:
            return self._tickets.get(ticket_id)

    def accept_ticket(
        self, ticket_id: str, expert_username: str, expert_ip: str, expert_port: int
    ) -> None:
        """Hand a pending work order to an expert."""
        with self._lock:
            order = self._tickets.get(ticket_id)
            if order is None:
                raise TicketNotFoundError(f"acceptTicket failed: ticket not found {ticket_id}")
            if order.status != WorkOrderStatus.PENDING:
                raise TicketStateError(
                    f"Ticket already handled: {ticket_id} status: {order.status}"
                )
            order.status = WorkOrderStatus.IN_PROGRESS
            try:
                self._dao.accept_work_order(
                    ticket_id, expert_username, expert_ip, expert_port, self._clock()
                )
            except (WorkOrderStoreError, WorkOrderNotFoundError) as exc:
                log.warning("Could not record acceptance of %s: %s", ticket_id, exc)
        log.debug("Ticket accepted: %s by %s", ticket_id, expert_username)

    def complete_ticket(self, ticket_id: str, description: str, solution: str) -> None:
        """Finish an in-progress work order with feedback and close it."""
        with self._lock:
            order = self._tickets.get(ticket_id)
            if order is None:
                raise TicketNotFoundError(
                    f"completeTicket failed: ticket not found {ticket_id}"
                )
            if order.status != WorkOrderStatus.IN_PROGRESS:
                raise TicketStateError(f"Cannot complete ticket: invalid state {order.status}")
            order.status = WorkOrderStatus.COMPLETED
            try:
                self._dao.complete_work_order(ticket_id, description, solution, self._clock())
            except (WorkOrderStoreError, WorkOrderNotFoundError) as exc:
                log.warning("Could not record completion of %s: %s", ticket_id, exc)
            self._tickets.pop(ticket_id, None)
        self._emit_closed(ticket_id)
        log.debug("Ticket completed: %s", ticket_id)