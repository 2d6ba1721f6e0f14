"""
RabbitMQ consumer: connection lifecycle, queue declaration and subscription.

Lifecycle:
  DISCONNECTED -> CONNECTING (backoff) -> CONNECTED -> CHANNEL_OPEN ->
  QUEUE_DECLARED -> READY -> CONSUMING (subscribe()).
  Connect attempts exhausted: -> DISCONNECTED and the last error is re-raised
  (startup failure).
  On broker disconnect: the delivery source is closed, so the consumption loop
  sees StreamClosed and exits; -> DISCONNECTED.
  On shutdown: -> CLOSING -> cancel consumer, close channel/connection -> CLOSED.

Concurrency:
  - close() acquires _lock around teardown and subscribe() holds it while
    creating the queue iterator, so the channel is never closed mid-subscribe.
"""
from __future__ import annotations

import asyncio
from typing import Any
from urllib.parse import quote

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractQueue, AbstractRobustConnection
from loguru import logger

from consumer_service.app.config.settings import Settings
from consumer_service.app.constants import ConsumerMode
from consumer_service.app.core import SERVICE_NAME
from consumer_service.app.core.backoff import exponential_backoff
from consumer_service.app.infrastructure.messaging.rabbitmq.aio_pika_delivery_source import AioPikaDeliverySource
from consumer_service.app.infrastructure.messaging.rabbitmq.constants import ConsumerState


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def build_amqp_url(settings: Settings) -> str:
    return (
        f"amqp://{quote(settings.username, safe='')}:{quote(settings.password, safe='')}"
        f"@{settings.host}:{settings.port}/{quote(settings.virtual_host, safe='')}"
    )


class RabbitMQConsumer:
    """MessageConsumer implementation"""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._state = ConsumerState.DISCONNECTED
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._queue: AbstractQueue | None = None
        self._source: AioPikaDeliverySource | None = None
        self._lock = asyncio.Lock()
        self._closing = False

    @property
    def state(self) -> ConsumerState:
        return self._state

    def _set_state(self, state: ConsumerState) -> None:
        self._state = state

    def _register_close_callback(self, connection: Any) -> None:
        callbacks = getattr(connection, "close_callbacks", None)
        if callbacks is not None and callable(getattr(callbacks, "add", None)):
            callbacks.add(self._on_connection_closed)
            return
        conn = getattr(connection, "connection", connection)
        if callable(getattr(conn, "add_close_callback", None)):
            conn.add_close_callback(self._on_connection_closed)

    def _on_connection_closed(self, *args: Any, **kwargs: Any) -> None:
        if self._closing:
            return
        _log("broker_disconnect_detected", state=self._state.value)
        self._set_state(ConsumerState.DISCONNECTED)
        if self._source is not None:
            self._source.mark_closed()

    async def _open_channel_and_declare(self) -> None:
        if not self._connection:
            return
        self._channel = await self._connection.channel()
        self._set_state(ConsumerState.CHANNEL_OPEN)
        # Batch mode needs `prefetch_count` unacked deliveries in flight to fill a batch.
        # Single mode leaves prefetch unbounded: a delivery left unacked after a
        # fetch error would otherwise hold one of a few QoS slots for good.
        prefetch_count = None
        if self._settings.consumer_mode is ConsumerMode.BATCH:
            prefetch_count = self._settings.prefetch_count
            await self._channel.set_qos(prefetch_count=prefetch_count)
        self._queue = await self._channel.declare_queue(
            self._settings.queue_name,
            durable=self._settings.queue_durable,
        )
        self._set_state(ConsumerState.QUEUE_DECLARED)
        _log(
            "rmq_queue_declared",
            queue=self._settings.queue_name,
            durable=self._settings.queue_durable,
            prefetch_count=prefetch_count,
        )
        self._set_state(ConsumerState.READY)

    async def _close_channel_and_connection(self) -> None:
        self._queue = None
        if self._channel:
            try:
                await self._channel.close()
            except Exception as e:
                logger.warning("channel close failed (continuing to close connection): {}", e)
            self._channel = None
        if self._connection:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("connection close failed: {}", e)
            self._connection = None

    async def connect(self) -> None:
        self._set_state(ConsumerState.CONNECTING)
        _log("rmq_connecting", host=self._settings.host, port=self._settings.port)
        attempt = 0
        async for delay in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        ):
            attempt += 1
            _log("rmq_connect_attempt", attempt=attempt, delay=delay)
            try:
                self._connection = await aio_pika.connect_robust(build_amqp_url(self._settings))
                self._register_close_callback(self._connection)
                break
            except Exception as e:
                logger.warning("rmq connect failed: {}", e)
                if attempt >= self._settings.max_connection_attempts:
                    _log("rmq_connect_failed", attempt=attempt)
                    self._set_state(ConsumerState.DISCONNECTED)
                    raise
        self._set_state(ConsumerState.CONNECTED)
        _log("rmq_connected")
        await self._open_channel_and_declare()

    async def subscribe(self) -> AioPikaDeliverySource:
        async with self._lock:
            if self._queue is None or self._state is not ConsumerState.READY:
                raise RuntimeError("consumer not connected")
            iterator = self._queue.iterator(consumer_tag=self._settings.consumer_tag, no_ack=False)
            source = AioPikaDeliverySource(iterator, consumer_tag=self._settings.consumer_tag)
            self._source = source
            self._set_state(ConsumerState.CONSUMING)
            _log("consumer_subscribed", consumer_tag=self._settings.consumer_tag)
            return source

    async def close(self) -> None:
        self._closing = True
        self._set_state(ConsumerState.CLOSING)
        _log("consumer_shutdown")
        async with self._lock:
            if self._source is not None:
                await self._source.close()
                self._source = None
            await self._close_channel_and_connection()
        self._set_state(ConsumerState.CLOSED)
