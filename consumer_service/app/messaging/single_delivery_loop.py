"""Single-delivery consumption: pull one, process it, acknowledge it, repeat."""
from __future__ import annotations

from typing import Any

from loguru import logger

from consumer_service.app.core import SERVICE_NAME
from consumer_service.app.domain.models import ConsumptionStats, FetchFailed, Received, StreamClosed
from consumer_service.app.messaging.acknowledgment import acknowledge
from consumer_service.app.ports.delivery_source import DeliverySource
from consumer_service.app.ports.processor import MessageProcessor


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class SingleDeliveryLoop:
    """
    Waiting -> Processing -> Acknowledging -> Waiting.

    Fetch errors are logged and the delivery is left unacknowledged for redelivery.
    FatalAckError and processor exceptions propagate out of run(). The loop returns
    when the source reports StreamClosed.
    """

    def __init__(self, source: DeliverySource, processor: MessageProcessor) -> None:
        self._source = source
        self._processor = processor

    async def run(self) -> ConsumptionStats:
        stats = ConsumptionStats()
        _log("single_loop_started")
        while True:
            outcome = await self._source.pull(timeout=None)

            if isinstance(outcome, Received):
                delivery = outcome.delivery
                await self._processor.process(delivery)
                stats.processed += 1
                await acknowledge(delivery)
                stats.acknowledged += 1
                continue

            if isinstance(outcome, FetchFailed):
                stats.fetch_errors += 1
                logger.warning("error receiving message: {}", outcome.error)
                continue

            if isinstance(outcome, StreamClosed):
                _log(
                    "stream_closed",
                    processed=stats.processed,
                    fetch_errors=stats.fetch_errors,
                )
                return stats
