"""Single-producer/single-consumer token channel."""

import queue
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class _Closed(Generic[R]):
    result: R | None


class StreamChannel(Generic[T, R]):
    """Unbounded queue joining a producer thread and a consuming generator.

    The producer ``put``s items and finally ``close``s the channel with a
    result value; the consumer iterates until the channel is closed or a
    cancellation event is set, then reads ``result``.
    """

    def __init__(self, poll_interval: float = 0.05) -> None:
        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        self._closed = threading.Event()
        self.poll_interval = poll_interval
        self.result: R | None = None
        self.drained = False

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, item: T) -> None:
        if self._closed.is_set():
            msg = "Cannot write to a closed channel"
            raise RuntimeError(msg)
        self._queue.put(item)

    def close(self, result: R | None = None) -> None:
        """Mark the end of the stream; later ``close`` calls are ignored."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._queue.put(_Closed(result))

    def consume(self, cancel_event: threading.Event | None = None) -> Iterator[T]:
        """Yield items in the order they were put.

        Stops as soon as ``cancel_event`` is set, without draining the rest.
        """
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return
            try:
                item = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            if isinstance(item, _Closed):
                self.result = item.result
                self.drained = True
                return
            yield item
