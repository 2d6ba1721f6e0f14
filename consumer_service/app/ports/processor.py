"""Port: user-supplied processing callbacks.

Processors do not acknowledge and do not report failure back to the loops;
any error handling is their own. Batch members must be treated as read-only.
"""
from __future__ import annotations

from typing import Protocol, Sequence

from consumer_service.app.ports.incoming_message import IncomingMessage


class MessageProcessor(Protocol):
    async def process(self, delivery: IncomingMessage) -> None: ...


class BatchProcessor(Protocol):
    async def process_batch(self, deliveries: Sequence[IncomingMessage]) -> None: ...
