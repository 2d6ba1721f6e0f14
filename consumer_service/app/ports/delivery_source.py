"""Port: ordered, asynchronous stream of deliveries for one subscription."""
from __future__ import annotations

from typing import Protocol

from consumer_service.app.domain.models import PullOutcome


class DeliverySource(Protocol):
    async def pull(self, timeout: float | None = None) -> PullOutcome:
        """
        Wait for the next delivery.

        timeout=None waits without bound. Never raises for transport or decode
        problems: those come back as FetchFailed, expiry as TimedOut and the end
        of the subscription as StreamClosed.
        """
        ...

    async def close(self) -> None:
        """Cancel the subscription; current and later pulls return StreamClosed."""
        ...
