"""
Cancellable, bounded channel between a blocking token producer and an async consumer.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import AsyncIterator, Callable, Iterator, List, Optional, Sequence

from medrag.models import RetrievedDocument

logger = logging.getLogger(__name__)

_FRAGMENT = "fragment"
_ERROR = "error"
_END = "end"

# How often a producer blocked on a full buffer re-checks for cancellation.
_PUT_POLL_S = 0.25


class FragmentStream:
    """
    Lazy, finite, single-use sequence of generated text fragments.

    The producer runs in a worker thread and pushes into a bounded queue, so a
    slow consumer throttles generation. Cancelling (explicitly, via ``aclose``,
    or by abandoning iteration) signals the producer through a threading.Event;
    producers check it between fragments and close their provider stream.
    The documents used to build the prompt are exposed for attribution once the
    stream has been consumed.
    """

    def __init__(
        self,
        produce: Callable[[threading.Event], Iterator[str]],
        documents: Sequence[RetrievedDocument] = (),
        *,
        prompt: str = "",
        timings=None,
        max_buffer: int = 32,
    ):
        self.documents: List[RetrievedDocument] = list(documents)
        self.prompt = prompt
        self.timings = timings
        self._produce = produce
        self._max_buffer = max_buffer
        self._cancel = threading.Event()
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._iterator: Optional[AsyncIterator[str]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        if not self._cancel.is_set():
            logger.debug("Fragment stream cancelled")
        self._cancel.set()

    async def aclose(self) -> None:
        self.cancel()
        if self._iterator is not None:
            await self._iterator.aclose()

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterator is not None:
            raise RuntimeError("FragmentStream can only be consumed once")
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._max_buffer)
        self._task = asyncio.create_task(asyncio.to_thread(self._run, loop))
        self._iterator = self._consume()
        return self._iterator

    async def _consume(self) -> AsyncIterator[str]:
        getter: Optional[asyncio.Future] = None
        try:
            while True:
                # One pending get at a time; a poll timeout never discards a dequeued item.
                if getter is None:
                    getter = asyncio.ensure_future(self._queue.get())
                done, _ = await asyncio.wait({getter}, timeout=_PUT_POLL_S)
                if not done:
                    if self._cancel.is_set():
                        return
                    continue
                kind, value = getter.result()
                getter = None
                if kind == _END or self._cancel.is_set():
                    return
                if kind == _ERROR:
                    raise value
                yield value
        finally:
            if getter is not None:
                getter.cancel()
            self.cancel()

    def _run(self, loop: asyncio.AbstractEventLoop) -> None:
        fragments = None
        try:
            fragments = self._produce(self._cancel)
            for fragment in fragments:
                if self._cancel.is_set() or not self._put(loop, (_FRAGMENT, fragment)):
                    return
        except Exception as e:
            if not self._cancel.is_set():
                logger.error(f"Fragment producer failed: {type(e).__name__}: {e}")
            self._put(loop, (_ERROR, e))
            return
        finally:
            close = getattr(fragments, "close", None)
            if close is not None:
                close()
        self._put(loop, (_END, None))

    def _put(self, loop: asyncio.AbstractEventLoop, item) -> bool:
        """
        Blocking put from the producer thread. False once the consumer is gone.

        Each item is submitted to the loop exactly once; the producer keeps
        waiting on that same put and only withdraws it after cancellation.
        """
        if self._cancel.is_set():
            return False
        try:
            fut = asyncio.run_coroutine_threadsafe(self._queue.put(item), loop)
        except RuntimeError:
            # Event loop closed underneath us.
            return False
        while True:
            try:
                fut.result(timeout=_PUT_POLL_S)
                return True
            except concurrent.futures.TimeoutError:
                if loop.is_closed():
                    return False
                if self._cancel.is_set():
                    # cancel() is False when the put already landed in the queue.
                    return not fut.cancel()
            except concurrent.futures.CancelledError:
                return False
