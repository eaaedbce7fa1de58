from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from multitail.core.errors import ReadError
from multitail.core.models import LogEvent, WatcherState
from multitail.core.signals import SignalStream
from multitail.core.tracked_file import TrackedFile
from multitail.core.watcher import Watcher


async def _start(path: Path, *, maxsize: int = 0) -> tuple[Watcher, asyncio.Task[None], asyncio.Queue[LogEvent]]:
    tracked = TrackedFile(str(path))
    await tracked.open()
    queue: asyncio.Queue[LogEvent] = asyncio.Queue(maxsize=maxsize)
    watcher = Watcher(tracked, SignalStream(str(path)), queue)
    task = asyncio.create_task(watcher.run())
    return watcher, task, queue


def _drain(queue: asyncio.Queue[LogEvent]) -> list[str]:
    out: list[str] = []
    while not queue.empty():
        out.append(queue.get_nowait().text)
    return out


@pytest.mark.asyncio
async def test_signal_forwards_lines_as_events(empty_log: Path, append_bytes, next_event) -> None:
    watcher, task, queue = await _start(empty_log)
    try:
        append_bytes(empty_log, b"hello\n")
        watcher.signals.notify()
        event = await next_event(queue)
        assert event.source_path == str(empty_log)
        assert event.text == "hello"
        assert event.timestamp.tzinfo is not None

        append_bytes(empty_log, b"wor")
        watcher.signals.notify()
        append_bytes(empty_log, b"ld\n")
        watcher.signals.notify()
        assert (await next_event(queue)).text == "world"
    finally:
        watcher.signals.close()
        await task

    assert _drain(queue) == []
    assert watcher.events_emitted == 2


@pytest.mark.asyncio
async def test_one_signal_drains_a_burst_in_order(empty_log: Path, append_bytes) -> None:
    watcher, task, queue = await _start(empty_log)
    for i in range(50):
        append_bytes(empty_log, f"line {i}\n".encode())
    watcher.signals.notify()
    watcher.signals.close()
    await asyncio.wait_for(task, timeout=2)

    assert _drain(queue) == [f"line {i}" for i in range(50)]


@pytest.mark.asyncio
async def test_partial_line_not_emitted_on_close(empty_log: Path, append_bytes) -> None:
    watcher, task, queue = await _start(empty_log)
    append_bytes(empty_log, b"done\nhalf")
    watcher.signals.notify()
    watcher.signals.close()
    await asyncio.wait_for(task, timeout=2)

    assert _drain(queue) == ["done"]


@pytest.mark.asyncio
async def test_closed_stream_stops_and_releases_file(empty_log: Path) -> None:
    watcher, task, _ = await _start(empty_log)
    watcher.signals.close()
    await asyncio.wait_for(task, timeout=2)

    assert watcher.state is WatcherState.STOPPED
    assert not watcher.tracked.is_open


@pytest.mark.asyncio
async def test_signal_error_is_logged_and_watching_continues(
    empty_log: Path, append_bytes, next_event, caplog: pytest.LogCaptureFixture
) -> None:
    watcher, task, queue = await _start(empty_log)
    try:
        watcher.signals.report_error("inotify queue overflow")
        append_bytes(empty_log, b"still here\n")
        watcher.signals.notify()
        assert (await next_event(queue)).text == "still here"
        assert not task.done()
    finally:
        watcher.signals.close()
        await task

    assert "inotify queue overflow" in caplog.text


@pytest.mark.asyncio
async def test_transient_read_error_does_not_stop_watcher(empty_log: Path, append_bytes, next_event) -> None:
    class FlakyFile(TrackedFile):
        failures = 1

        async def read_new_lines(self) -> list[str]:
            if self.failures:
                self.failures -= 1
                raise ReadError("stat hiccup")
            return await super().read_new_lines()

    tracked = FlakyFile(str(empty_log))
    await tracked.open()
    queue: asyncio.Queue[LogEvent] = asyncio.Queue()
    watcher = Watcher(tracked, SignalStream(str(empty_log)), queue)
    task = asyncio.create_task(watcher.run())
    try:
        append_bytes(empty_log, b"first\n")
        watcher.signals.notify()
        await asyncio.sleep(0.05)
        assert queue.empty()
        assert not task.done()

        watcher.signals.notify()
        assert (await next_event(queue)).text == "first"
    finally:
        watcher.signals.close()
        await task


@pytest.mark.asyncio
@pytest.mark.skipif(os.name == "nt", reason="cannot delete an open file on Windows")
async def test_removed_file_stops_only_this_watcher(empty_log: Path) -> None:
    watcher, task, queue = await _start(empty_log)
    empty_log.unlink()
    watcher.signals.notify()
    await asyncio.wait_for(task, timeout=2)

    assert watcher.state is WatcherState.STOPPED
    assert not watcher.tracked.is_open
    assert watcher.signals.closed
    assert queue.empty()


@pytest.mark.asyncio
async def test_cancellation_releases_file(empty_log: Path) -> None:
    watcher, task, _ = await _start(empty_log)
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not watcher.tracked.is_open
    assert watcher.state is WatcherState.STOPPED


@pytest.mark.asyncio
async def test_full_queue_applies_backpressure_without_loss(empty_log: Path, append_bytes, next_event) -> None:
    watcher, task, queue = await _start(empty_log, maxsize=1)
    try:
        append_bytes(empty_log, b"a\nb\nc\n")
        watcher.signals.notify()
        await asyncio.sleep(0.05)
        assert queue.full()
        assert not task.done()

        assert [(await next_event(queue)).text for _ in range(3)] == ["a", "b", "c"]
    finally:
        watcher.signals.close()
        await task


@pytest.mark.asyncio
async def test_one_signal_drains_past_the_chunk_limit(empty_log: Path, append_bytes) -> None:
    tracked = TrackedFile(str(empty_log), read_chunk_size=16)
    await tracked.open()
    queue: asyncio.Queue[LogEvent] = asyncio.Queue()
    watcher = Watcher(tracked, SignalStream(str(empty_log)), queue)
    task = asyncio.create_task(watcher.run())

    append_bytes(empty_log, b"".join(f"entry number {i}\n".encode() for i in range(20)))
    watcher.signals.notify()
    watcher.signals.close()
    await asyncio.wait_for(task, timeout=2)

    assert _drain(queue) == [f"entry number {i}" for i in range(20)]
