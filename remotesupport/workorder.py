"""In-memory state of one open work order."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .protocol import WorkOrderStatus


@dataclass(eq=False)
class WorkOrder:
    """A ticket with the devices it concerns and the sessions taking part."""

    device_ids: list[str]
    created_at: datetime = field(default_factory=datetime.now)
    ticket_id: str = field(init=False)
    clients: list[Any] = field(default_factory=list, init=False)
    is_active: bool = field(default=True, init=False)
    status: WorkOrderStatus = field(default=WorkOrderStatus.PENDING, init=False)

    def __post_init__(self) -> None:
        self.device_ids = list(self.device_ids)
        self.ticket_id = "T" + self.created_at.strftime("%Y%m%d%H%M%S")

    def add_client(self, client: Any) -> None:
        """Add a session unless it already takes part."""
        if client not in self.clients:
            self.clients.append(client)

    def remove_client(self, client: Any) -> None:
        """Remove a session; the order turns inactive once nobody is left."""
        if client in self.clients:
            self.clients.remove(client)
        if not self.clients:
            self.is_active = False

    def is_empty(self) -> bool:
        """True when no session takes part."""
        return not self.clients