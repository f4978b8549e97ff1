"""Admission queue: pending operations ordered by descending priority."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Optional

from .base import Operation


@dataclass(eq=False)
class QueuedOperation:
    """One submitted unit of work and the future its callers await.

    ``priority`` is the effective priority used for ordering;
    ``base_priority`` is what the caller asked for and stays fixed across
    rate-limit retries so the retry boost never stacks.
    """

    execute: Operation[Any]
    future: asyncio.Future[Any]
    key: Optional[str] = None
    priority: int = 0
    base_priority: int = 0
    attempts: int = 0
    enqueued_at: float = 0.0


class AdmissionQueue:
    """Priority-ordered list of operations awaiting a dispatch slot.

    ``push`` splices before the first entry with a strictly lower
    priority, so operations of equal priority keep submission order.
    ``push_front`` splices before the first entry whose priority is lower
    or equal, placing a retried operation ahead of its band.
    """

    def __init__(self) -> None:
        self._items: list[QueuedOperation] = []

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[QueuedOperation]:
        return iter(list(self._items))

    def push(self, op: QueuedOperation) -> int:
        """Insert *op* behind every entry of equal or higher priority."""
        return self._insert_at(
            next(
                (i for i, r in enumerate(self._items) if r.priority < op.priority),
                len(self._items),
            ),
            op,
        )

    def push_front(self, op: QueuedOperation) -> int:
        """Insert *op* ahead of every entry of equal or lower priority."""
        return self._insert_at(
            next(
                (i for i, r in enumerate(self._items) if r.priority <= op.priority),
                len(self._items),
            ),
            op,
        )

    def _insert_at(self, index: int, op: QueuedOperation) -> int:
        self._items.insert(index, op)
        return index

    def pop(self) -> QueuedOperation | None:
        """Remove and return the highest-priority operation."""
        if not self._items:
            return None
        return self._items.pop(0)

    def peek(self) -> QueuedOperation | None:
        return self._items[0] if self._items else None

    def drain(self) -> list[QueuedOperation]:
        """Remove and return every queued operation."""
        items, self._items = self._items, []
        return items
