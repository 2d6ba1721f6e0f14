"""Port: broker session for one queue. Implementations live in infrastructure."""
from __future__ import annotations

from typing import Protocol

from consumer_service.app.ports.delivery_source import DeliverySource


class MessageConsumer(Protocol):
    async def connect(self) -> None:
        """Connect, open a channel and declare the queue. Raises on startup failure."""
        ...

    async def subscribe(self) -> DeliverySource:
        """Start consuming the declared queue with manual acknowledgment."""
        ...

    async def close(self) -> None: ...
