from __future__ import annotations

import asyncio
from typing import AsyncIterator

import pytest

from resilient_http.sink import StreamingSink


async def _chunks(*parts: bytes, delay: float = 0.0) -> AsyncIterator[bytes]:
    for part in parts:
        if delay:
            await asyncio.sleep(delay)
        yield part


def test_chunks_are_delivered_in_order_and_accumulated() -> None:
    received: list[bytes] = []
    progress: list[tuple[int, int]] = []
    completed: list[bool] = []

    sink = StreamingSink(
        received.append,
        lambda r, t: progress.append((r, t)),
        lambda: completed.append(True),
        accumulate=True,
    )
    sink.on_content_length(6)

    async def run() -> None:
        await sink.pump(_chunks(b"ab", b"cd", b"ef"))

    asyncio.run(run())
    sink.complete()
    sink.complete()

    assert received == [b"ab", b"cd", b"ef"]
    assert sink.get_data() == b"abcdef"
    assert sink.get_text() == "abcdef"
    assert sink.total_bytes_received == 6
    assert sink.progress == 1.0
    assert progress[0] == (0, 6)
    assert progress[-1] == (6, 6)
    assert completed == [True]
    assert sink.is_finished


def test_without_accumulation_data_is_not_retained() -> None:
    received: list[bytes] = []
    sink = StreamingSink(received.append)

    assert sink.receive(b"hello")
    sink.complete()

    assert received == [b"hello"]
    assert sink.get_data() is None
    assert sink.get_text() is None
    assert sink.total_bytes_received == 5


def test_receive_after_finish_is_refused() -> None:
    sink = StreamingSink(accumulate=True)
    sink.complete()

    assert sink.receive(b"late") is False
    assert sink.get_data() == b""


def test_empty_chunk_is_ignored() -> None:
    sink = StreamingSink(accumulate=True)

    assert sink.receive(b"") is True
    assert sink.total_bytes_received == 0


def test_failing_chunk_callback_marks_error_once() -> None:
    errors: list[str] = []

    def explode(chunk: bytes) -> None:
        raise RuntimeError("boom")

    sink = StreamingSink(explode, on_error=errors.append)

    assert sink.receive(b"x") is False
    sink.fail("again")
    sink.complete()

    assert sink.has_error
    assert not sink.is_completed
    assert errors == ["Error processing chunk: boom"]


def test_source_error_is_raised_after_marking_the_session() -> None:
    errors: list[str] = []
    sink = StreamingSink(on_error=errors.append, accumulate=True)

    async def broken() -> AsyncIterator[bytes]:
        yield b"part"
        raise ConnectionError("reset by peer")

    with pytest.raises(ConnectionError):
        asyncio.run(sink.pump(broken()))

    assert sink.get_data() == b"part"
    assert sink.has_error
    assert errors == ["Stream failed: reset by peer"]


def test_cancelled_pump_marks_sink_errored() -> None:
    errors: list[str] = []
    sink = StreamingSink(on_error=errors.append, queue_size=1)

    async def run() -> None:
        task = asyncio.ensure_future(sink.pump(_chunks(*[b"x"] * 100, delay=0.05)))
        await asyncio.sleep(0.12)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())

    assert sink.has_error
    assert errors == ["Stream canceled"]
    assert 0 < sink.total_bytes_received < 100


def test_reset_starts_a_fresh_session() -> None:
    sink = StreamingSink(accumulate=True)
    sink.receive(b"abc")
    sink.fail("oops")
    sink.reset()

    assert not sink.has_error
    assert sink.total_bytes_received == 0
    assert sink.get_data() == b""
    assert sink.receive(b"d")


def test_clear_empties_the_buffer() -> None:
    sink = StreamingSink(accumulate=True)
    sink.receive(b"abc")
    sink.clear()

    assert sink.get_data() == b""
    assert sink.total_bytes_received == 3
