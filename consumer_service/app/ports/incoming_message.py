"""Port: abstraction for an incoming queue message (a delivery). Implementations live in infrastructure."""
from __future__ import annotations

from typing import Mapping, Protocol

from consumer_service.app.domain.headers import HeaderValue


class IncomingMessage(Protocol):
    """Transport-agnostic delivery. Loops and processors use this; broker adapters implement it."""

    @property
    def body(self) -> bytes: ...

    @property
    def headers(self) -> Mapping[str, HeaderValue] | None: ...

    @property
    def delivery_tag(self) -> int | None: ...

    async def ack(self) -> None: ...
