"""
DeliverySource over an aio_pika QueueIterator.

The iterator owns buffering, consumer cancellation and requeueing of unconsumed
messages on close. pull() keeps one pending `__anext__` task across calls and
waits on it with asyncio.wait, which never cancels it: a per-pull timeout only
stops waiting, it does not close the iterator or drop the message in flight.

Closing:
  - close() (graceful): close the iterator (cancels the broker consumer and
    requeues its buffer), requeue a message that raced in on the pending task,
    and wake pullers with StreamClosed.
  - mark_closed() (broker disconnect): wake pullers with StreamClosed; the
    broker requeues unacked messages of a dead channel by itself.
"""
from __future__ import annotations

import asyncio
from typing import Any

from aio_pika.abc import AbstractIncomingMessage, AbstractQueueIterator
from aio_pika.exceptions import ChannelClosed, ChannelInvalidStateError, ConnectionClosed
from loguru import logger

from consumer_service.app.core import SERVICE_NAME
from consumer_service.app.domain.models import FetchFailed, PullOutcome, Received, StreamClosed, TimedOut
from consumer_service.app.infrastructure.messaging.rabbitmq.aio_pika_message_adapter import AioPikaMessageAdapter

_CLOSE_WAIT_SECONDS = 5.0


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class AioPikaDeliverySource:
    def __init__(self, iterator: AbstractQueueIterator, *, consumer_tag: str | None = None) -> None:
        self._iterator = iterator
        self._consumer_tag = consumer_tag
        self._next: asyncio.Future[AbstractIncomingMessage] | None = None
        self._stream_closed = asyncio.Event()
        self._iterator_closed = False
        self._closed = False

    @property
    def consumer_tag(self) -> str | None:
        return self._consumer_tag

    def _pending_next(self) -> asyncio.Future[AbstractIncomingMessage]:
        if self._next is None:
            self._next = asyncio.ensure_future(self._iterator.__anext__())
        return self._next

    async def pull(self, timeout: float | None = None) -> PullOutcome:
        if self._closed:
            return StreamClosed()
        pending = self._pending_next()
        closed_wait = asyncio.ensure_future(self._stream_closed.wait())
        try:
            done, _ = await asyncio.wait(
                {pending, closed_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            closed_wait.cancel()

        if pending in done:
            self._next = None
            return self._take(pending)
        if self._stream_closed.is_set():
            self._closed = True
            return StreamClosed()
        return TimedOut()

    def _take(self, task: asyncio.Future[AbstractIncomingMessage]) -> PullOutcome:
        if task.cancelled():
            self._closed = True
            return StreamClosed()
        error = task.exception()
        if isinstance(error, (StopAsyncIteration, ChannelClosed, ChannelInvalidStateError, ConnectionClosed)):
            self._closed = True
            return StreamClosed()
        if error is not None:
            return FetchFailed(error)
        try:
            return Received(AioPikaMessageAdapter(task.result()))
        except Exception as exc:
            return FetchFailed(exc)

    def mark_closed(self) -> None:
        self._stream_closed.set()

    async def close(self) -> None:
        if self._iterator_closed:
            return
        self._iterator_closed = True
        self._stream_closed.set()
        try:
            await self._iterator.close()
        except Exception as e:
            logger.warning("queue iterator close failed (continuing shutdown): {}", e)

        pending, self._next = self._next, None
        if pending is not None:
            if not pending.done():
                pending.cancel()
            await asyncio.wait({pending}, timeout=_CLOSE_WAIT_SECONDS)
            await self._requeue_raced(pending)
        _log("delivery_source_closed", consumer_tag=self._consumer_tag)

    async def _requeue_raced(self, task: asyncio.Future[AbstractIncomingMessage]) -> None:
        if not task.done() or task.cancelled() or task.exception() is not None:
            return
        try:
            await task.result().nack(requeue=True)
        except Exception as e:
            logger.warning("requeue of undelivered message failed: {}", e)
