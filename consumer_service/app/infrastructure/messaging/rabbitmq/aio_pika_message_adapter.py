"""Adapter: wrap aio_pika.IncomingMessage to implement ports.IncomingMessage."""
from __future__ import annotations

from typing import Mapping

from aio_pika.abc import AbstractIncomingMessage

from consumer_service.app.domain.headers import HeaderValue, to_header_table


class AioPikaMessageAdapter:
    """Implements consumer_service.app.ports.incoming_message.IncomingMessage for aio_pika.

    Headers are decoded on construction so a malformed table fails before the
    delivery reaches a processor.
    """

    def __init__(self, message: AbstractIncomingMessage) -> None:
        self._message = message
        self._headers = to_header_table(message.headers or None)

    @property
    def raw(self) -> AbstractIncomingMessage:
        return self._message

    @property
    def body(self) -> bytes:
        return self._message.body

    @property
    def headers(self) -> Mapping[str, HeaderValue] | None:
        return self._headers

    @property
    def delivery_tag(self) -> int | None:
        return self._message.delivery_tag

    async def ack(self) -> None:
        await self._message.ack()
