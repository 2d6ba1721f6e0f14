"""Acknowledgment primitive shared by both consumption loops.

A failed ack means the channel/session can no longer be trusted to know which
deliveries were confirmed. It is surfaced as FatalAckError, which the loops
never catch; it terminates the process.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from consumer_service.app.core import SERVICE_NAME
from consumer_service.app.ports.incoming_message import IncomingMessage


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).debug("")


class FatalAckError(Exception):
    """Acknowledging a delivery failed. Not recoverable."""

    def __init__(self, delivery_tag: int | None, cause: BaseException) -> None:
        super().__init__(f"failed to acknowledge delivery {delivery_tag}: {cause}")
        self.delivery_tag = delivery_tag
        self.cause = cause


async def acknowledge(delivery: IncomingMessage) -> None:
    try:
        await delivery.ack()
    except Exception as exc:
        raise FatalAckError(delivery.delivery_tag, exc) from exc
    _log("message_acknowledged", delivery_tag=delivery.delivery_tag)
