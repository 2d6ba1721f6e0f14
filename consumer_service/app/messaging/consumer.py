"""Builds the consumption loop for the configured mode."""
from __future__ import annotations

from typing import Awaitable, Protocol

from consumer_service.app.config.settings import Settings
from consumer_service.app.constants import ConsumerMode
from consumer_service.app.domain.models import ConsumptionStats
from consumer_service.app.messaging.batch_accumulator import BatchAccumulator
from consumer_service.app.messaging.single_delivery_loop import SingleDeliveryLoop
from consumer_service.app.ports.delivery_source import DeliverySource
from consumer_service.app.ports.processor import BatchProcessor, MessageProcessor


class ConsumptionLoop(Protocol):
    def run(self) -> Awaitable[ConsumptionStats]: ...


def create_consumption_loop(
    settings: Settings,
    source: DeliverySource,
    processor: MessageProcessor | BatchProcessor,
) -> ConsumptionLoop:
    """`processor` must implement process() for single mode and process_batch() for batch mode."""
    mode = ConsumerMode(settings.consumer_mode)

    if mode is ConsumerMode.SINGLE:
        return SingleDeliveryLoop(source, processor)

    if mode is ConsumerMode.BATCH:
        return BatchAccumulator(
            source,
            processor,
            capacity=settings.prefetch_count,
            window_seconds=settings.prefetch_window_seconds,
            empty_backoff_seconds=settings.empty_batch_backoff_ms / 1000.0,
        )

    raise ValueError(f"Unsupported consumer mode: {mode}")
