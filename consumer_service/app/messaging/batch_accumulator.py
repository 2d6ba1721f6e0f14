"""
Windowed-batch consumption.

Cycle:
  FILLING: pull with a fresh `window_seconds` budget per attempt and append until
    the batch is full, a pull times out, a pull fails or the stream closes.
    A steady trickle of deliveries, each inside the window, keeps the batch
    growing up to capacity.
  FLUSHING: skipped when the batch is empty. Otherwise the processor is awaited
    once with the whole batch.
  DRAINING: every member is acknowledged individually in arrival order, then the
    batch container is cleared for the next cycle.

A failed ack raises FatalAckError out of run(): no further members are acked and
no further batches are accumulated. A crash mid-drain redelivers the unacked
tail (at-least-once), so processors must be idempotent.
"""
from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from consumer_service.app.core import SERVICE_NAME
from consumer_service.app.domain.models import (
    Batch,
    ConsumptionStats,
    FetchFailed,
    Received,
    StreamClosed,
)
from consumer_service.app.messaging.acknowledgment import acknowledge
from consumer_service.app.ports.delivery_source import DeliverySource
from consumer_service.app.ports.processor import BatchProcessor


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class BatchAccumulator:
    def __init__(
        self,
        source: DeliverySource,
        processor: BatchProcessor,
        *,
        capacity: int,
        window_seconds: float,
        empty_backoff_seconds: float = 0.0,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._source = source
        self._processor = processor
        self._batch = Batch(capacity)
        self._window_seconds = window_seconds
        self._empty_backoff_seconds = max(0.0, empty_backoff_seconds)

    @property
    def batch(self) -> Batch:
        return self._batch

    async def _fill(self, stats: ConsumptionStats) -> bool:
        """Fill the batch. Returns True once the source has closed."""
        while not self._batch.is_full():
            outcome = await self._source.pull(timeout=self._window_seconds)
            if isinstance(outcome, Received):
                self._batch.append(outcome.delivery)
                continue
            if isinstance(outcome, StreamClosed):
                return True
            if isinstance(outcome, FetchFailed):
                stats.fetch_errors += 1
                logger.warning("error receiving message, ending fill: {}", outcome.error)
            # timeout or fetch error: flush what we have
            break
        return False

    async def _flush_and_drain(self, stats: ConsumptionStats) -> None:
        members = self._batch.members
        _log("batch_flushing", size=len(members), capacity=self._batch.capacity)
        await self._processor.process_batch(members)
        stats.processed += len(members)
        stats.batches += 1

        for delivery in members:
            await acknowledge(delivery)
            stats.acknowledged += 1
        self._batch.clear()
        _log("batch_drained", size=len(members))

    async def run(self) -> ConsumptionStats:
        stats = ConsumptionStats()
        _log(
            "batch_loop_started",
            capacity=self._batch.capacity,
            window_seconds=self._window_seconds,
        )
        while True:
            self._batch.clear()
            closed = await self._fill(stats)

            if self._batch.is_empty():
                if closed:
                    break
                if self._empty_backoff_seconds:
                    await asyncio.sleep(self._empty_backoff_seconds)
                else:
                    await asyncio.sleep(0)
                continue

            await self._flush_and_drain(stats)
            if closed:
                break

        _log(
            "stream_closed",
            processed=stats.processed,
            batches=stats.batches,
            fetch_errors=stats.fetch_errors,
        )
        return stats
