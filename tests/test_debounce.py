from __future__ import annotations

import asyncio

import pytest

from agents.channels import EventChannel
from agents.debounce import DebouncedAggregator


def test_fragments_flush_once_after_quiet_period() -> None:
    flushed: list[tuple[str, str]] = []

    async def scenario() -> None:
        aggregator = DebouncedAggregator(lambda key, value: flushed.append((key, value)), quiet_period=0.05)
        aggregator.push("a", "Hel")
        await asyncio.sleep(0.02)
        aggregator.push("a", "lo")
        await asyncio.sleep(0.02)
        assert flushed == []
        await asyncio.sleep(0.1)
        assert not aggregator.has_pending("a")

    asyncio.run(scenario())

    assert flushed == [("a", "Hello")]


def test_keys_are_independent() -> None:
    flushed: list[tuple[str, int]] = []

    async def sink(key: str, value: int) -> None:
        flushed.append((key, value))

    async def scenario() -> None:
        aggregator = DebouncedAggregator(sink, quiet_period=0.02)
        aggregator.push("x", 1)
        aggregator.push("y", 10)
        aggregator.push("x", 2)
        await asyncio.sleep(0.08)

    asyncio.run(scenario())

    assert sorted(flushed) == [("x", 3), ("y", 10)]


def test_clear_cancels_pending_flush() -> None:
    flushed: list[str] = []

    async def scenario() -> None:
        aggregator = DebouncedAggregator(lambda key, value: flushed.append(value), quiet_period=0.02)
        aggregator.push("a", "stale")
        aggregator.clear("a")
        aggregator.push("b", "also stale")
        aggregator.clear_all()
        await asyncio.sleep(0.06)
        assert not aggregator.has_pending("a")

    asyncio.run(scenario())

    assert flushed == []


def test_explicit_flush_delivers_immediately() -> None:
    flushed: list[str] = []

    async def scenario() -> None:
        aggregator = DebouncedAggregator(lambda key, value: flushed.append(value), quiet_period=10)
        aggregator.push("a", "now")
        await aggregator.flush("a")
        assert flushed == ["now"]
        # Nothing left to flush.
        await aggregator.flush("a")

    asyncio.run(scenario())

    assert flushed == ["now"]


def test_channel_delivers_in_emission_order_and_survives_failing_handler() -> None:
    received: list[int] = []

    def broken(payload: int) -> None:
        raise RuntimeError("boom")

    async def scenario() -> None:
        channel: EventChannel[int] = EventChannel("numbers")
        channel.subscribe(broken)
        unsubscribe = channel.subscribe(received.append)
        await channel.emit(1)
        await channel.emit(2)
        unsubscribe()
        await channel.emit(3)

    asyncio.run(scenario())

    assert received == [1, 2]


def test_closed_channel_rejects_subscribers() -> None:
    channel: EventChannel[int] = EventChannel("numbers")
    channel.close()

    assert channel.closed
    with pytest.raises(RuntimeError):
        channel.subscribe(lambda payload: None)
