"""In-memory consumer for testing and local mode.

Messages are published straight into the delivery source; acks are recorded
on the message. No broker involved.
"""
from __future__ import annotations

import asyncio
import itertools
from typing import Any, Mapping

from consumer_service.app.domain.headers import HeaderValue, to_header_table
from consumer_service.app.domain.models import FetchFailed, PullOutcome, Received, StreamClosed, TimedOut

_CLOSED = object()


class InMemoryMessage:
    def __init__(
        self,
        body: bytes,
        headers: Mapping[str, Any] | None = None,
        *,
        delivery_tag: int | None = None,
        ack_error: Exception | None = None,
    ) -> None:
        self._body = body
        self._headers = to_header_table(headers)
        self._delivery_tag = delivery_tag
        self._ack_error = ack_error
        self.ack_count = 0

    @property
    def body(self) -> bytes:
        return self._body

    @property
    def headers(self) -> Mapping[str, HeaderValue] | None:
        return self._headers

    @property
    def delivery_tag(self) -> int | None:
        return self._delivery_tag

    @property
    def acked(self) -> bool:
        return self.ack_count > 0

    async def ack(self) -> None:
        if self._ack_error is not None:
            raise self._ack_error
        self.ack_count += 1


class InMemoryDeliverySource:
    def __init__(self) -> None:
        self._buffer: asyncio.Queue[Any] = asyncio.Queue()
        self._tags = itertools.count(1)
        self._closed = False

    def publish(
        self,
        body: bytes,
        headers: Mapping[str, Any] | None = None,
        *,
        ack_error: Exception | None = None,
    ) -> InMemoryMessage:
        message = InMemoryMessage(body, headers, delivery_tag=next(self._tags), ack_error=ack_error)
        self._buffer.put_nowait(message)
        return message

    def fail_next(self, error: Exception) -> None:
        """Queue a fetch error; the pull that reaches it returns FetchFailed."""
        self._buffer.put_nowait(error)

    async def pull(self, timeout: float | None = None) -> PullOutcome:
        if self._closed:
            return StreamClosed()
        try:
            if timeout is None:
                item = await self._buffer.get()
            else:
                item = await asyncio.wait_for(self._buffer.get(), timeout)
        except asyncio.TimeoutError:
            return TimedOut()
        if item is _CLOSED:
            self._closed = True
            return StreamClosed()
        if isinstance(item, Exception):
            return FetchFailed(item)
        return Received(item)

    async def close(self) -> None:
        self._buffer.put_nowait(_CLOSED)


class InMemoryConsumer:
    """MessageConsumer over an InMemoryDeliverySource."""

    def __init__(self) -> None:
        self.source = InMemoryDeliverySource()
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def subscribe(self) -> InMemoryDeliverySource:
        if not self.connected:
            raise RuntimeError("consumer not connected")
        return self.source

    async def close(self) -> None:
        await self.source.close()
        self.connected = False
