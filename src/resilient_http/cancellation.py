"""Cooperative cancellation and the per-call / per-attempt timeout scopes."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from .exceptions import CancelKind

T = TypeVar("T")


def _resolve(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


class CancellationToken:
    """A signal a caller fires to stop a running call.

    `cancel()` may be called from any thread; waiters are woken on their own loop.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._lock = threading.Lock()
        self._waiters: list[asyncio.Future[None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            waiters, self._waiters = self._waiters, []
        for future in waiters:
            loop = future.get_loop()
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve, future)

    async def wait(self) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        with self._lock:
            if self._cancelled:
                return
            self._waiters.append(future)
        try:
            await future
        finally:
            with self._lock:
                if future in self._waiters:
                    self._waiters.remove(future)


class ScopeCanceled(Exception):
    """Raised out of `AttemptScope.run` when the attempt was cut short."""

    def __init__(self, kind: CancelKind) -> None:
        super().__init__(kind.value)
        self.kind = kind


async def _stop(tasks: Iterable[asyncio.Future[Any]]) -> None:
    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


class CallScope:
    """Parent scope for one logical call: caller tokens plus the total-timeout deadline."""

    def __init__(
        self,
        timeout: float,
        tokens: Iterable[CancellationToken | None] = (),
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._tokens = [token for token in tokens if token is not None]
        self._started = clock()
        self._deadline = self._started + timeout
        self._expired = False

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    @property
    def remaining(self) -> float:
        return self._deadline - self._clock()

    @property
    def caller_cancelled(self) -> bool:
        return any(token.is_cancelled for token in self._tokens)

    @property
    def timed_out(self) -> bool:
        if not self._expired and self.remaining <= 0:
            self._expired = True
        return self._expired

    @property
    def fired(self) -> bool:
        return self.timed_out or self.caller_cancelled

    def expire(self) -> None:
        self._expired = True

    def cancel_kind(self) -> CancelKind | None:
        if self.timed_out:
            return CancelKind.TOTAL_TIMEOUT
        if self.caller_cancelled:
            return CancelKind.CALLER
        return None

    def attempt(self, connection_timeout: float) -> AttemptScope:
        return AttemptScope(self, connection_timeout)

    def _watch(self) -> list[asyncio.Future[None]]:
        return [asyncio.ensure_future(token.wait()) for token in self._tokens]

    async def sleep(self, seconds: float) -> bool:
        """Wait up to `seconds`, returning False if the scope fired meanwhile."""
        if self.fired:
            return False
        delay = max(0.0, min(seconds, self.remaining))
        watchers = self._watch()
        sleeper = asyncio.ensure_future(asyncio.sleep(delay))
        try:
            await asyncio.wait([sleeper, *watchers], return_when=asyncio.FIRST_COMPLETED)
        finally:
            await _stop([sleeper, *watchers])
        return not self.fired


class AttemptScope:
    """Child scope of a single attempt, bounded by min(connection timeout, remaining total time).

    Use as an async context manager; watcher tasks are torn down on exit.
    """

    def __init__(self, parent: CallScope, connection_timeout: float) -> None:
        self.parent = parent
        self.timeout = max(0.0, min(connection_timeout, parent.remaining))
        self._deadline = parent._clock() + self.timeout
        self._watchers: list[asyncio.Future[None]] = []

    @property
    def remaining(self) -> float:
        return self._deadline - self.parent._clock()

    async def __aenter__(self) -> AttemptScope:
        self._watchers = self.parent._watch()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await _stop(self._watchers)
        self._watchers = []

    def _kind(self) -> CancelKind:
        return self.parent.cancel_kind() or CancelKind.CONNECTION_TIMEOUT

    async def run(self, awaitable: Awaitable[T], *, bounded: bool = True) -> T:
        """Run `awaitable` until it finishes or the scope fires.

        With `bounded=False` only caller cancellation and the total deadline apply.
        """
        task = asyncio.ensure_future(awaitable)
        limit = self.remaining if bounded else self.parent.remaining
        try:
            done, _ = await asyncio.wait(
                [task, *self._watchers],
                timeout=max(0.0, limit),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await _stop([task])
            raise
        if task in done:
            return task.result()
        await _stop([task])
        raise ScopeCanceled(self._kind())
