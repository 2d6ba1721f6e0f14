"""Domain models: the reusable batch container and delivery-source pull outcomes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Union

from consumer_service.app.ports.incoming_message import IncomingMessage


class BatchFullError(Exception):
    """Raised when appending to a batch that already holds `capacity` deliveries."""


class Batch:
    """
    Ordered, capacity-bounded collection of deliveries.

    One instance is owned by the accumulator and reused across cycles via clear().
    The processor only ever sees the read-only `members` snapshot.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("batch capacity must be >= 1")
        self._capacity = capacity
        self._items: list[IncomingMessage] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def members(self) -> tuple[IncomingMessage, ...]:
        return tuple(self._items)

    def is_full(self) -> bool:
        return len(self._items) >= self._capacity

    def is_empty(self) -> bool:
        return not self._items

    def append(self, delivery: IncomingMessage) -> None:
        if self.is_full():
            raise BatchFullError(f"batch capacity {self._capacity} reached")
        self._items.append(delivery)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[IncomingMessage]:
        return iter(self._items)


@dataclass(frozen=True)
class Received:
    """A delivery arrived."""

    delivery: IncomingMessage


@dataclass(frozen=True)
class FetchFailed:
    """Recoverable pull failure; the underlying message (if any) stays unacknowledged."""

    error: Exception


@dataclass(frozen=True)
class TimedOut:
    """No delivery arrived within the pull timeout."""


@dataclass(frozen=True)
class StreamClosed:
    """The subscription ended; no further deliveries will arrive."""


PullOutcome = Union[Received, FetchFailed, TimedOut, StreamClosed]


@dataclass
class ConsumptionStats:
    """Counters returned by a consumption loop when it exits."""

    processed: int = 0
    acknowledged: int = 0
    fetch_errors: int = 0
    batches: int = 0
