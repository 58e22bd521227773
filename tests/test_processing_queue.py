"""Tests for the single-flight processing queue."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from grainup.ingestion import ProcessingQueue, QueueEntry


def test_entries_are_handled_in_arrival_order_one_at_a_time() -> None:
    order: list[str] = []
    active = 0
    peak = 0

    async def _handler(entry: QueueEntry) -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        order.append(entry.path.name)
        active -= 1

    async def _scenario() -> None:
        queue = ProcessingQueue(_handler)
        queue.start()
        for name in ("a.mp3", "b.mp3", "c.mp3"):
            queue.enqueue(Path(name))
        await queue.join()
        await queue.shutdown()

    asyncio.run(_scenario())

    assert order == ["a.mp3", "b.mp3", "c.mp3"]
    assert peak == 1


def test_enqueue_while_busy_waits_for_current_entry() -> None:
    started: list[str] = []
    release = None

    async def _handler(entry: QueueEntry) -> None:
        started.append(entry.path.name)
        if entry.path.name == "first.mov":
            await release.wait()

    async def _scenario() -> None:
        nonlocal release
        release = asyncio.Event()
        queue = ProcessingQueue(_handler)
        queue.start()
        queue.enqueue(Path("first.mov"))
        await asyncio.sleep(0.01)
        queue.enqueue(Path("second.mov"))
        await asyncio.sleep(0.01)

        assert queue.processing
        assert queue.current is not None and queue.current.path.name == "first.mov"
        assert queue.pending == [Path("second.mov")]
        assert started == ["first.mov"]

        release.set()
        await queue.join()
        assert started == ["first.mov", "second.mov"]
        assert queue.depth == 0
        assert not queue.processing
        await queue.shutdown()

    asyncio.run(_scenario())


def test_handler_failure_does_not_stop_the_queue() -> None:
    handled: list[str] = []

    async def _handler(entry: QueueEntry) -> None:
        if entry.path.name == "bad.wav":
            raise ValueError("boom")
        handled.append(entry.path.name)

    async def _scenario() -> None:
        queue = ProcessingQueue(_handler)
        queue.start()
        queue.enqueue(Path("bad.wav"))
        queue.enqueue(Path("good.wav"))
        await queue.join()
        assert queue.running
        await queue.shutdown()

    asyncio.run(_scenario())

    assert handled == ["good.wav"]


def test_join_returns_immediately_when_nothing_is_queued() -> None:
    async def _handler(entry: QueueEntry) -> None:
        raise AssertionError("not expected")

    async def _scenario() -> None:
        queue = ProcessingQueue(_handler)
        queue.start()
        await asyncio.wait_for(queue.join(), timeout=1)
        await queue.shutdown()

    asyncio.run(_scenario())


def test_shutdown_drops_pending_and_cancels_in_flight_after_grace() -> None:
    handled: list[str] = []
    cancelled: list[str] = []

    async def _handler(entry: QueueEntry) -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(entry.path.name)
            raise
        handled.append(entry.path.name)

    async def _scenario() -> ProcessingQueue:
        queue = ProcessingQueue(_handler)
        queue.start()
        queue.enqueue(Path("long.mp4"))
        queue.enqueue(Path("never.mp4"))
        await asyncio.sleep(0.01)
        await queue.shutdown(grace_seconds=0.05)
        return queue

    queue = asyncio.run(_scenario())

    assert cancelled == ["long.mp4"]
    assert handled == []
    assert not queue.running
    with pytest.raises(RuntimeError):
        queue.enqueue(Path("late.mp4"))


def test_shutdown_lets_in_flight_entry_finish_within_grace() -> None:
    handled: list[str] = []

    async def _handler(entry: QueueEntry) -> None:
        await asyncio.sleep(0.05)
        handled.append(entry.path.name)

    async def _scenario() -> None:
        queue = ProcessingQueue(_handler)
        queue.start()
        queue.enqueue(Path("short.mp4"))
        await asyncio.sleep(0.01)
        await queue.shutdown(grace_seconds=2)

    asyncio.run(_scenario())

    assert handled == ["short.mp4"]
