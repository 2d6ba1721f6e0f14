"""Consumer composition root: build and lifecycle-manage concrete dependencies.

Composition may: import concrete classes, call factories, store interface types,
manage high-level lifecycle.
"""
from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from consumer_service.app.application.processing_service import LoggingProcessor
from consumer_service.app.config.settings import Settings
from consumer_service.app.core import SERVICE_NAME
from consumer_service.app.infrastructure.messaging.factory import create_message_consumer
from consumer_service.app.messaging.consumer import ConsumptionLoop, create_consumption_loop
from consumer_service.app.ports.delivery_source import DeliverySource
from consumer_service.app.ports.message_consumer import MessageConsumer
from consumer_service.app.ports.processor import BatchProcessor, MessageProcessor


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class ConsumerDependencies:
    """Holds wired consumer dependencies and their lifecycle."""

    def __init__(self, *, settings: Settings, processor: MessageProcessor | BatchProcessor | None = None) -> None:
        self._settings = settings
        self._processor = processor
        self._message_consumer: MessageConsumer | None = None
        self._source: DeliverySource | None = None
        self._consumption_loop: ConsumptionLoop | None = None
        self._shutdown_task: asyncio.Task[None] | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def message_consumer(self) -> MessageConsumer:
        if self._message_consumer is None:
            raise RuntimeError("message_consumer is not initialized")
        return self._message_consumer

    @property
    def source(self) -> DeliverySource:
        if self._source is None:
            raise RuntimeError("delivery source is not initialized")
        return self._source

    @property
    def consumption_loop(self) -> ConsumptionLoop:
        if self._consumption_loop is None:
            raise RuntimeError("consumption_loop is not initialized")
        return self._consumption_loop

    async def connect(self) -> None:
        self._message_consumer = create_message_consumer(self._settings)
        try:
            await self._message_consumer.connect()
            self._source = await self._message_consumer.subscribe()
        except Exception:
            await self.close()
            raise

        processor = self._processor or LoggingProcessor(self._settings.header_key)
        self._consumption_loop = create_consumption_loop(self._settings, self._source, processor)

    def request_shutdown(self) -> None:
        """Stop pulling new deliveries; in-flight work finishes and the loop returns."""
        if self._source is None or self._shutdown_task is not None:
            return
        _log("shutdown_signal")
        self._shutdown_task = asyncio.get_running_loop().create_task(self._source.close())

    async def close(self) -> None:
        if self._shutdown_task is not None:
            try:
                await self._shutdown_task
            except Exception as exc:
                logger.warning("delivery source close failed: {}", exc)
            self._shutdown_task = None

        if self._message_consumer is not None:
            try:
                await self._message_consumer.close()
            except Exception as exc:
                logger.warning("message consumer close failed: {}", exc)
            self._message_consumer = None

        self._source = None
        self._consumption_loop = None


def create_consumer_dependencies(
    settings: Settings | None = None,
    *,
    processor: MessageProcessor | BatchProcessor | None = None,
) -> ConsumerDependencies:
    return ConsumerDependencies(settings=settings or Settings(), processor=processor)
