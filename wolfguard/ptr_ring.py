"""Bounded FIFO ring of items, one producer side and one consumer side.

An empty slot holds ``None``, so ``None`` itself cannot be queued. The
consumer clears slots in batches rather than one at a time, so a slot that
has been consumed may stay occupied until a batch of them has been.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Iterable, Optional, Sequence

Destroy = Optional[Callable[[Any], None]]

_CACHE_BYTES = 64
_POINTER_SIZE = 8
_MAX_SIZE = (1 << 22) // _POINTER_SIZE


class RingFull(Exception):
    """The ring has no free slot for another item."""


def _new_queue(size: int) -> list:
    if size < 0:
        raise ValueError(f"ring size must not be negative, got {size}")
    if size > _MAX_SIZE:
        raise MemoryError(f"ring size {size} exceeds the maximum of {_MAX_SIZE}")
    return [None] * size


class PtrRing:
    """A fixed-size ring queue of non-None items."""

    def __init__(self, size: int) -> None:
        self._queue = _new_queue(size)
        self._set_size(size)
        self._producer = 0
        self._consumer_head = 0
        self._consumer_tail = 0
        self._producer_lock = threading.Lock()
        self._consumer_lock = threading.Lock()

    @property
    def size(self) -> int:
        """Maximum number of entries in the ring."""
        return self._size

    @property
    def batch(self) -> int:
        """Number of consumed slots cleared together."""
        return self._batch

    def _set_size(self, size: int) -> None:
        self._size = size
        self._batch = _CACHE_BYTES * 2 // _POINTER_SIZE
        if self._batch > size // 2 or not self._batch:
            self._batch = 1

    # -- producer side -----------------------------------------------------

    def _full(self) -> bool:
        return not self._size or self._queue[self._producer] is not None

    def is_full(self) -> bool:
        """Whether the next produce would fail."""
        with self._producer_lock:
            return self._full()

    def produce(self, item: Any) -> None:
        """Append ``item``; raise RingFull if there is no free slot."""
        if item is None:
            raise ValueError("None cannot be queued")
        with self._producer_lock:
            if self._full():
                raise RingFull("ring is full")
            self._queue[self._producer] = item
            self._producer += 1
            if self._producer >= self._size:
                self._producer = 0

    # -- consumer side -----------------------------------------------------

    def _peek(self) -> Any:
        if self._size:
            return self._queue[self._consumer_head]
        return None

    def _empty(self) -> bool:
        return self._peek() is None

    def _discard_one(self) -> None:
        consumer_head = self._consumer_head
        head = consumer_head
        consumer_head += 1
        if (
            consumer_head - self._consumer_tail >= self._batch
            or consumer_head >= self._size
        ):
            # Clear in reverse so the slot the producer waits on goes last.
            while head >= self._consumer_tail:
                self._queue[head] = None
                head -= 1
            self._consumer_tail = consumer_head
        if consumer_head >= self._size:
            consumer_head = 0
            self._consumer_tail = 0
        self._consumer_head = consumer_head

    def _consume(self) -> Any:
        item = self._peek()
        if item is not None:
            self._discard_one()
        return item

    def peek(self) -> Any:
        """The next item to be consumed, or None if the ring is empty."""
        with self._consumer_lock:
            return self._peek()

    def is_empty(self) -> bool:
        """Whether there is nothing to consume."""
        with self._consumer_lock:
            return self._empty()

    def consume(self) -> Any:
        """Remove and return the oldest item, or None if the ring is empty."""
        with self._consumer_lock:
            return self._consume()

    def consume_batched(self, n: int) -> list:
        """Remove and return up to ``n`` of the oldest items."""
        items = []
        with self._consumer_lock:
            while len(items) < n:
                item = self._consume()
                if item is None:
                    break
                items.append(item)
        return items

    def unconsume(self, batch: Sequence[Any], destroy: Destroy = None) -> None:
        """Put ``batch`` back at the front of the ring, in its order.

        Items that no longer fit are passed to ``destroy``, last first.
        """
        pending = list(batch)
        with self._consumer_lock, self._producer_lock:
            if self._size:
                head = self._consumer_head - 1
                while head >= self._consumer_tail:
                    self._queue[head] = None
                    head -= 1
                self._consumer_tail = self._consumer_head

                while pending:
                    head = self._consumer_head - 1
                    if head < 0:
                        head = self._size - 1
                    if self._queue[head] is not None:
                        break
                    self._queue[head] = pending.pop()
                    self._consumer_tail = head
                    self._consumer_head = head

            while pending:
                item = pending.pop()
                if destroy is not None:
                    destroy(item)

    # -- resizing ----------------------------------------------------------

    def _swap_queue(self, queue: list, size: int, destroy: Destroy) -> list:
        producer = 0
        while True:
            item = self._consume()
            if item is None:
                break
            if producer < size:
                queue[producer] = item
                producer += 1
            elif destroy is not None:
                destroy(item)
        if producer >= size:
            producer = 0
        self._set_size(size)
        self._producer = producer
        self._consumer_head = 0
        self._consumer_tail = 0
        old = self._queue
        self._queue = queue
        return old

    def resize(self, size: int, destroy: Destroy = None) -> None:
        """Change the capacity, keeping the oldest items that fit.

        Items beyond the new capacity are passed to ``destroy``.
        """
        queue = _new_queue(size)
        with self._consumer_lock, self._producer_lock:
            self._swap_queue(queue, size, destroy)

    def cleanup(self, destroy: Destroy = None) -> None:
        """Drain the ring, passing each item to ``destroy``, and release it."""
        if destroy is not None:
            while True:
                item = self.consume()
                if item is None:
                    break
                destroy(item)
        with self._consumer_lock, self._producer_lock:
            self._queue = []
            self._set_size(0)
            self._producer = 0
            self._consumer_head = 0
            self._consumer_tail = 0


def resize_multiple(rings: Iterable[PtrRing], size: int, destroy: Destroy = None) -> None:
    """Resize every ring to ``size``; nothing changes if allocation fails."""
    targets = list(rings)
    queues = [_new_queue(size) for _ in targets]
    for ring, queue in zip(targets, queues):
        with ring._consumer_lock, ring._producer_lock:
            ring._swap_queue(queue, size, destroy)