"""
Single-flight admission queues for shared callback slots.

Providers deliver results by writing one well-known global name
(``apidata``, ``jsonpgz``, ``v_jj<code>``...). Two in-flight loads against the
same name would overwrite each other's result, so every load that uses a
shared name runs through the queue that owns it. Different queues interleave
freely.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

T = TypeVar('T')


class SingleFlightQueue:
    """
    FIFO queue that runs at most one task at a time.

    Each submission is chained after the current tail, whether that tail is
    still pending, succeeded or failed. A failing task only fails its own
    caller. ``on_idle`` is called whenever the last pending task finishes.
    """

    def __init__(self, name: str, on_idle: Optional[Callable[["SingleFlightQueue"], None]] = None):
        self.name = name
        self._on_idle = on_idle
        self._tail: asyncio.Future | None = None
        self._pending = 0

    @property
    def pending(self) -> int:
        """Number of submitted tasks that have not finished yet."""
        return self._pending

    async def run(self, task: Callable[[], Awaitable[T]]) -> T:
        previous = self._tail
        current = asyncio.get_running_loop().create_future()
        self._tail = current
        self._pending += 1
        try:
            if previous is not None and not previous.done():
                # asyncio.wait never cancels or raises from the awaited future
                await asyncio.wait({previous})
            return await task()
        finally:
            self._pending -= 1
            _release_after(previous, current)
            if self._pending == 0 and self._on_idle is not None:
                self._on_idle(self)


def _release_after(previous: asyncio.Future | None, current: asyncio.Future) -> None:
    def release(_: object = None) -> None:
        if not current.done():
            current.set_result(None)

    if previous is None or previous.done():
        release()
    else:
        # cancelled while still waiting: hand over only once the predecessor ends
        previous.add_done_callback(release)


class SlotQueues:
    """
    The process-wide callback slots.

    ``apidata`` guards the Eastmoney F10 history/holdings pages, ``jsonpgz``
    guards the live-estimate endpoint. Tencent quote bindings get one queue
    per binding name, created on first use and dropped once idle.
    """

    APIDATA = "apidata"
    JSONPGZ = "jsonpgz"

    def __init__(self) -> None:
        self.apidata = SingleFlightQueue(self.APIDATA)
        self.jsonpgz = SingleFlightQueue(self.JSONPGZ)
        self._bindings: Dict[str, SingleFlightQueue] = {}

    @property
    def bindings(self) -> Tuple[str, ...]:
        """Binding names that currently have a live queue."""
        return tuple(self._bindings)

    def for_binding(self, name: str) -> SingleFlightQueue:
        queue = self._bindings.get(name)
        if queue is None:
            queue = SingleFlightQueue(name, on_idle=self._drop_binding)
            self._bindings[name] = queue
        return queue

    def _drop_binding(self, queue: SingleFlightQueue) -> None:
        if self._bindings.get(queue.name) is queue:
            del self._bindings[queue.name]


# Singleton instance
slot_queues = SlotQueues()
