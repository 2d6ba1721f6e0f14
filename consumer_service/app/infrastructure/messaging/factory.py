"""Message consumer factory: selects implementation from config. Only place that imports concrete consumers."""
from __future__ import annotations

from consumer_service.app.config.settings import Settings
from consumer_service.app.ports.message_consumer import MessageConsumer
from consumer_service.app.infrastructure.messaging.inmemory.in_memory_consumer import InMemoryConsumer
from consumer_service.app.infrastructure.messaging.rabbitmq.rabbitmq_consumer import RabbitMQConsumer


def create_message_consumer(settings: Settings) -> MessageConsumer:
    backend = settings.consumer_backend.strip().lower()

    if backend == "rabbitmq":
        return RabbitMQConsumer(settings)

    if backend == "inmemory":
        return InMemoryConsumer()

    raise ValueError(f"Unsupported consumer backend: {backend}")
