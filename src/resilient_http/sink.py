"""Incremental consumer for streamed response bodies."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from .logging import get_logger

ChunkCallback = Callable[[bytes], None]
ProgressChangedCallback = Callable[[int, int], None]
CompletedCallback = Callable[[], None]
ErrorCallback = Callable[[str], None]

DEFAULT_QUEUE_SIZE = 16

_EOF = object()

logger = get_logger(__name__)


@dataclass
class StreamingSession:
    total_bytes_received: int = 0
    content_length: int = -1
    is_completed: bool = False
    has_error: bool = False
    error: str | None = None
    buffer: bytearray | None = field(default=None, repr=False)

    @property
    def progress(self) -> float:
        if self.content_length <= 0:
            return 0.0
        return self.total_bytes_received / self.content_length


class StreamingSink:
    """Tracks one streamed transfer and forwards each chunk to the caller.

    Accumulation is off by default so large downloads keep bounded memory;
    in that mode `get_data()` and `get_text()` return None and callers must
    consume the body through `on_chunk`.
    """

    def __init__(
        self,
        on_chunk: ChunkCallback | None = None,
        on_progress_changed: ProgressChangedCallback | None = None,
        on_completed: CompletedCallback | None = None,
        on_error: ErrorCallback | None = None,
        *,
        accumulate: bool = False,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._on_chunk = on_chunk
        self._on_progress_changed = on_progress_changed
        self._on_completed = on_completed
        self._on_error = on_error
        self.accumulate = accumulate
        self._queue_size = max(1, queue_size)
        self.session = StreamingSession(buffer=bytearray() if accumulate else None)
        self._log = logger.bind(component="sink")

    @property
    def total_bytes_received(self) -> int:
        return self.session.total_bytes_received

    @property
    def content_length(self) -> int:
        return self.session.content_length

    @property
    def is_completed(self) -> bool:
        return self.session.is_completed

    @property
    def has_error(self) -> bool:
        return self.session.has_error

    @property
    def is_finished(self) -> bool:
        return self.session.is_completed or self.session.has_error

    @property
    def progress(self) -> float:
        return self.session.progress

    def reset(self) -> None:
        """Start a fresh session, e.g. before a retried attempt."""
        self.session = StreamingSession(buffer=bytearray() if self.accumulate else None)

    def on_content_length(self, total: int) -> None:
        self.session.content_length = total
        self._report_progress(0, total)

    def receive(self, chunk: bytes) -> bool:
        """Handle one chunk; False tells the transport to stop."""
        if self.is_finished:
            return False
        if not chunk:
            self._log.warning("empty_chunk")
            return True
        try:
            self.session.total_bytes_received += len(chunk)
            if self.session.buffer is not None:
                self.session.buffer.extend(chunk)
            if self._on_chunk is not None:
                self._on_chunk(bytes(chunk))
            if self._on_progress_changed is not None:
                self._on_progress_changed(self.session.total_bytes_received, self.session.content_length)
        except Exception as exc:
            self._log.error("chunk_callback_failed", error=str(exc))
            self.fail(f"Error processing chunk: {exc}")
            return False
        return True

    def complete(self) -> None:
        if self.is_finished:
            return
        self.session.is_completed = True
        self._report_progress(self.session.total_bytes_received, self.session.content_length)
        if self._on_completed is not None:
            try:
                self._on_completed()
            except Exception as exc:
                self._log.error("completed_callback_failed", error=str(exc))

    def fail(self, message: str) -> None:
        if self.is_finished:
            return
        self.session.has_error = True
        self.session.error = message
        self._log.warning("stream_failed", error=message, received=self.session.total_bytes_received)
        if self._on_error is not None:
            try:
                self._on_error(message)
            except Exception as exc:
                self._log.error("error_callback_failed", error=str(exc))

    def _report_progress(self, received: int, total: int) -> None:
        if self._on_progress_changed is None:
            return
        try:
            self._on_progress_changed(received, total)
        except Exception as exc:
            self._log.error("progress_callback_failed", error=str(exc))

    def get_data(self) -> bytes | None:
        if self.session.buffer is None:
            return None
        return bytes(self.session.buffer)

    def get_text(self) -> str | None:
        data = self.get_data()
        if data is None:
            return None
        return data.decode("utf-8", errors="replace")

    def clear(self) -> None:
        if self.session.buffer is not None:
            self.session.buffer.clear()

    async def pump(self, chunks: AsyncIterator[bytes]) -> None:
        """Copy `chunks` through a bounded queue, delivering them in order on this task.

        Returns once the source is drained or the sink asked to stop. Raises
        whatever the source raised, after marking the session errored.
        """
        queue: asyncio.Queue[object] = asyncio.Queue(maxsize=self._queue_size)
        failures: list[Exception] = []

        async def produce() -> None:
            try:
                async for chunk in chunks:
                    await queue.put(chunk)
            except Exception as exc:
                failures.append(exc)
            await queue.put(_EOF)

        producer = asyncio.ensure_future(produce())
        try:
            while True:
                item = await queue.get()
                if item is _EOF:
                    break
                if not self.receive(item):  # type: ignore[arg-type]
                    break
            if failures:
                raise failures[0]
        except asyncio.CancelledError:
            self.fail("Stream canceled")
            raise
        except Exception as exc:
            self.fail(f"Stream failed: {exc}")
            raise
        finally:
            if not producer.done():
                producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)
