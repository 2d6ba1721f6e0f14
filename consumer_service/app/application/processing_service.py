"""Sample processor: logs every payload and the value of one header.

Stands in for user code; replace process()/process_batch() bodies with real work.
"""
from __future__ import annotations

from typing import Any, Sequence

from loguru import logger

from consumer_service.app.constants import DEFAULT_HEADER_KEY
from consumer_service.app.core import SERVICE_NAME
from consumer_service.app.domain.headers import get_header_value_if_exists
from consumer_service.app.ports.incoming_message import IncomingMessage


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def decode_payload(body: bytes) -> str:
    return bytes(body).decode("utf-8", errors="replace")


class LoggingProcessor:
    """Implements both MessageProcessor and BatchProcessor. Never acknowledges."""

    def __init__(self, header_key: str = DEFAULT_HEADER_KEY) -> None:
        self._header_key = header_key

    def _inspect(self, delivery: IncomingMessage) -> str | None:
        logger.trace("Received message: {}", decode_payload(delivery.body))
        header_value = get_header_value_if_exists(delivery.headers, self._header_key)
        _log(
            "message_header",
            delivery_tag=delivery.delivery_tag,
            header_key=self._header_key,
            header_value=header_value,
        )
        return header_value

    async def process(self, delivery: IncomingMessage) -> None:
        self._inspect(delivery)

    async def process_batch(self, deliveries: Sequence[IncomingMessage]) -> None:
        for delivery in deliveries:
            self._inspect(delivery)
