"""Push → pull bridge.

Callback APIs (a parser reporting nodes as it builds them) push values
whenever they like.  ``async for`` consumers pull.  A *subscribable*
is the smallest shape that describes the push side: a function that
takes an ``emit`` callback, starts producing, and returns a function
that cancels production.

:class:`SubscribableIterator` turns a subscribable into an async
iterator.  Two buffers make it indifferent to which side runs ahead:

  - a result queue for values emitted before anyone asked for them;
  - a FIFO of waiters (futures) for requests made before any value
    arrived.

At most one of the two is non-empty at any time, so values are handed
out strictly in emission order.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from typing import Any, Generic, NamedTuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IterationResult(NamedTuple, Generic[T]):
    """One emission: a value, end-of-stream, or a producer failure."""

    value: T | None = None
    done: bool = False
    error: BaseException | None = None

    @classmethod
    def of(cls, value: T) -> IterationResult[T]:
        return cls(value=value)

    @classmethod
    def finished(cls) -> IterationResult[Any]:
        return cls(done=True)

    @classmethod
    def failed(cls, error: BaseException) -> IterationResult[Any]:
        return cls(done=True, error=error)


Emit = Callable[[IterationResult[T]], None]
Cancel = Callable[[], None]
Subscribable = Callable[[Emit[T]], Cancel]

_DONE: IterationResult[Any] = IterationResult(done=True)


class SubscribableIterator(Generic[T]):
    """Async iterator over the values a :data:`Subscribable` emits.

    Subscribes immediately on construction, so it must be created while
    an event loop is running.  The result queue is unbounded: a producer
    that outruns its consumer buffers everything it emits.
    """

    def __init__(self, subscribable: Subscribable[T]) -> None:
        self._queue: deque[IterationResult[T]] = deque()
        self._waiters: deque[asyncio.Future[IterationResult[T]]] = deque()
        self._finished = False  # a done/error result has been emitted
        self._canceled = False
        self._cancel = subscribable(self._emit)

    # ── Push side ────────────────────────────────────────────────

    def _emit(self, result: IterationResult[T]) -> None:
        if self._canceled or self._finished:
            return
        if result.done:
            self._finished = True

        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                # The awaiting task was cancelled; hand the value to the next one.
                continue
            waiter.set_result(result)
            break
        else:
            self._queue.append(result)
            return

        # A terminal result satisfies every remaining waiter.
        if result.done:
            self._release_waiters()

    # ── Pull side ────────────────────────────────────────────────

    def __aiter__(self) -> SubscribableIterator[T]:
        return self

    async def __anext__(self) -> T:
        result = await self._next_result()
        if result.error is not None:
            raise result.error
        if result.done:
            raise StopAsyncIteration
        return result.value  # type: ignore[return-value]

    def _next_result(self) -> asyncio.Future[IterationResult[T]]:
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[IterationResult[T]] = loop.create_future()

        if self._queue:
            result = self._queue.popleft()
            if result.done:
                # Keep the terminal result around for later requests.
                self._queue.appendleft(_DONE)
            waiter.set_result(result)
        elif self._canceled or self._finished:
            waiter.set_result(_DONE)
        else:
            self._waiters.append(waiter)
        return waiter

    async def aclose(self) -> None:
        """Cancel the subscription.

        Values already queued stay retrievable; waiting and future
        requests resolve as done once the queue is drained.
        """
        if self._canceled:
            return
        self._canceled = True
        logger.debug("subscription canceled (%d queued result(s) kept)", len(self._queue))
        try:
            self._cancel()
        finally:
            self._release_waiters()

    async def athrow(self, *args: Any) -> None:
        """Abort: same as :meth:`aclose`; the abort reason is not an error."""
        await self.aclose()
        raise StopAsyncIteration

    def _release_waiters(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(_DONE)
