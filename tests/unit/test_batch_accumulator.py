"""Unit tests for the windowed-batch accumulator: fill, flush, drain and fatal acks."""
from __future__ import annotations

import asyncio
import time

import pytest

from consumer_service.app.domain.models import Batch, BatchFullError
from consumer_service.app.infrastructure.messaging.inmemory.in_memory_consumer import InMemoryDeliverySource
from consumer_service.app.messaging.acknowledgment import FatalAckError
from consumer_service.app.messaging.batch_accumulator import BatchAccumulator
from tests.fakes import TIMEOUT, RecordingProcessor, ScriptedSource, make_message


def _accumulator(source, processor, *, capacity=10, window=0.2, **kwargs) -> BatchAccumulator:
    return BatchAccumulator(source, processor, capacity=capacity, window_seconds=window, **kwargs)


@pytest.mark.asyncio
async def test_batch_preserves_arrival_order(processor):
    messages = [make_message(i) for i in range(1, 6)]
    source = ScriptedSource([*messages, TIMEOUT])

    await _accumulator(source, processor).run()

    assert len(processor.batch_calls) == 1
    assert [m.delivery_tag for m in processor.batch_calls[0]] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_batches_never_exceed_capacity(processor):
    messages = [make_message(i) for i in range(1, 12)]
    source = ScriptedSource(messages)

    await _accumulator(source, processor, capacity=4).run()

    assert [len(b) for b in processor.batch_calls] == [4, 4, 3]
    assert all(len(b) <= 4 for b in processor.batch_calls)
    assert [m.delivery_tag for b in processor.batch_calls for m in b] == list(range(1, 12))


@pytest.mark.asyncio
async def test_empty_cycles_never_reach_processor(processor):
    source = ScriptedSource([TIMEOUT, TIMEOUT, make_message(1), TIMEOUT, TIMEOUT])

    stats = await _accumulator(source, processor).run()

    assert len(processor.batch_calls) == 1
    assert all(len(b) > 0 for b in processor.batch_calls)
    assert stats.batches == 1


@pytest.mark.asyncio
async def test_every_member_acked_once_after_processing(processor):
    messages = [make_message(i) for i in range(1, 8)]
    source = ScriptedSource([*messages[:3], TIMEOUT, *messages[3:]])

    stats = await _accumulator(source, processor, capacity=3).run()

    assert [m.ack_count for m in messages] == [1] * 7
    # nothing was acked while the processor looked at it
    assert all(not any(flags) for flags in processor.acked_at_call)
    assert stats.processed == 7
    assert stats.acknowledged == 7
    assert stats.batches == 3


@pytest.mark.asyncio
async def test_previous_batch_fully_acked_before_next_processing(processor):
    first = [make_message(i) for i in range(1, 3)]
    second = [make_message(i) for i in range(3, 5)]
    seen_before_second: list[int] = []

    original = processor.process_batch

    async def process_batch(deliveries):
        if len(processor.batch_calls) == 1:
            seen_before_second.extend(m.ack_count for m in first)
        await original(deliveries)

    processor.process_batch = process_batch
    source = ScriptedSource([*first, TIMEOUT, *second, TIMEOUT])

    await _accumulator(source, processor).run()

    assert seen_before_second == [1, 1]


@pytest.mark.asyncio
async def test_timeout_flushes_partial_batch(processor):
    messages = [make_message(i) for i in range(1, 4)]
    source = ScriptedSource([*messages, TIMEOUT])

    await _accumulator(source, processor, capacity=10).run()

    assert processor.events[0] == ("process_batch", [1, 2, 3])


@pytest.mark.asyncio
async def test_each_pull_gets_a_fresh_window(processor):
    source = ScriptedSource([make_message(1), make_message(2), TIMEOUT])

    await _accumulator(source, processor, window=0.5).run()

    assert source.pull_timeouts
    assert set(source.pull_timeouts) == {0.5}


@pytest.mark.asyncio
async def test_fetch_error_ends_fill_and_flushes(processor):
    source = ScriptedSource([make_message(1), RuntimeError("decode failed"), make_message(2), TIMEOUT])

    stats = await _accumulator(source, processor).run()

    assert [[m.delivery_tag for m in b] for b in processor.batch_calls] == [[1], [2]]
    assert stats.fetch_errors == 1


@pytest.mark.asyncio
async def test_stream_close_flushes_collected_members_then_returns(processor):
    messages = [make_message(1), make_message(2)]
    source = ScriptedSource(messages)

    stats = await _accumulator(source, processor, capacity=10).run()

    assert [[m.delivery_tag for m in b] for b in processor.batch_calls] == [[1, 2]]
    assert all(m.ack_count == 1 for m in messages)
    assert stats.batches == 1


@pytest.mark.asyncio
async def test_ack_failure_is_fatal_and_stops_accumulation(processor):
    failing = make_message(2, ack_error=RuntimeError("channel closed"))
    first, third = make_message(1), make_message(3)
    later = [make_message(i) for i in range(4, 7)]
    source = ScriptedSource([first, failing, third, TIMEOUT, *later])

    with pytest.raises(FatalAckError) as exc_info:
        await _accumulator(source, processor).run()

    assert exc_info.value.delivery_tag == 2
    assert isinstance(exc_info.value.cause, RuntimeError)
    assert first.ack_count == 1
    assert third.ack_count == 0
    assert len(processor.batch_calls) == 1
    assert source.remaining == len(later)


@pytest.mark.asyncio
async def test_batch_container_is_reused(processor):
    source = ScriptedSource([make_message(1), TIMEOUT, make_message(2), TIMEOUT])
    accumulator = _accumulator(source, processor)
    batch = accumulator.batch

    await accumulator.run()

    assert accumulator.batch is batch
    assert len(batch) == 0


@pytest.mark.asyncio
async def test_processor_receives_read_only_snapshot():
    seen = []

    class MutatingProcessor:
        async def process_batch(self, deliveries):
            seen.append(type(deliveries))
            with pytest.raises(AttributeError):
                deliveries.append(make_message(99))

    source = ScriptedSource([make_message(1), TIMEOUT])
    await _accumulator(source, MutatingProcessor()).run()

    assert seen == [tuple]


@pytest.mark.asyncio
async def test_empty_backoff_sleeps_between_idle_cycles(processor, monkeypatch):
    sleeps: list[float] = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        sleeps.append(delay)
        await real_sleep(0)

    import consumer_service.app.messaging.batch_accumulator as mod

    monkeypatch.setattr(mod.asyncio, "sleep", fake_sleep)
    source = ScriptedSource([TIMEOUT, TIMEOUT])

    await _accumulator(source, processor, empty_backoff_seconds=0.05).run()

    assert sleeps == [0.05, 0.05]
    assert processor.batch_calls == []


def test_invalid_window_rejected(processor):
    with pytest.raises(ValueError):
        BatchAccumulator(ScriptedSource([]), processor, capacity=1, window_seconds=0)


def test_batch_rejects_append_beyond_capacity():
    batch = Batch(2)
    batch.append(make_message(1))
    batch.append(make_message(2))
    assert batch.is_full()
    with pytest.raises(BatchFullError):
        batch.append(make_message(3))
    batch.clear()
    assert batch.is_empty()


def test_batch_capacity_must_be_positive():
    with pytest.raises(ValueError):
        Batch(0)


@pytest.mark.asyncio
async def test_full_batch_flushes_without_waiting_for_window():
    """capacity=5, window=200ms: five quick deliveries flush as soon as the fifth arrives."""
    source = InMemoryDeliverySource()
    flushed = asyncio.Event()
    calls: list[list[int]] = []

    class Processor:
        async def process_batch(self, deliveries):
            calls.append([d.delivery_tag for d in deliveries])
            flushed.set()

    accumulator = BatchAccumulator(source, Processor(), capacity=5, window_seconds=0.2)
    task = asyncio.create_task(accumulator.run())

    started = time.monotonic()
    messages = []
    for i in range(5):
        messages.append(source.publish(f"m{i}".encode()))
        await asyncio.sleep(0.002)
    await asyncio.wait_for(flushed.wait(), timeout=1.0)
    elapsed = time.monotonic() - started

    await source.close()
    await asyncio.wait_for(task, timeout=1.0)

    assert calls[0] == [1, 2, 3, 4, 5]
    assert elapsed < 0.2
    assert all(m.ack_count == 1 for m in messages)


@pytest.mark.asyncio
async def test_two_deliveries_then_silence_flush_after_window():
    """capacity=5, window=200ms: two deliveries and then 250ms of silence flush a batch of two."""
    source = InMemoryDeliverySource()
    flushed = asyncio.Event()
    calls: list[list[int]] = []

    class Processor:
        async def process_batch(self, deliveries):
            calls.append([d.delivery_tag for d in deliveries])
            flushed.set()

    accumulator = BatchAccumulator(source, Processor(), capacity=5, window_seconds=0.2)
    task = asyncio.create_task(accumulator.run())

    started = time.monotonic()
    source.publish(b"a")
    source.publish(b"b")
    await asyncio.wait_for(flushed.wait(), timeout=1.0)
    elapsed = time.monotonic() - started
    await asyncio.sleep(0.25)

    await source.close()
    await asyncio.wait_for(task, timeout=1.0)

    assert calls == [[1, 2]]
    assert elapsed >= 0.15
