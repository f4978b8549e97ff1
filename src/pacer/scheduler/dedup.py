"""Deduplicator: collapse identical in-flight requests onto one future.

A caller-supplied key maps to the future of the first submission.  Any
submission with the same key within ``window`` seconds of that entry's
registration gets the very same future back, so the wrapped operation runs
once and every caller observes the same result or exception.

Entries are swept by a cleanup scheduled ``2 * window`` after
registration.  The sweep only removes the entry it was scheduled for, and
only once it is older than the window, so an entry re-registered under the
same key in the meantime is left alone.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class PendingDedupEntry:
    future: asyncio.Future[Any]
    created_at: float


class Deduplicator:
    """Short-lived registry of in-flight futures keyed by request identity."""

    def __init__(self, window: float, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._window = window
        self._loop = loop
        self._entries: dict[str, PendingDedupEntry] = {}
        self._cleanups: dict[str, asyncio.TimerHandle] = {}

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def lookup(self, key: str, now: float) -> asyncio.Future[Any] | None:
        """Return the shared future for *key* if it is still inside the window."""
        entry = self._entries.get(key)
        if entry is None or now - entry.created_at >= self._window:
            return None
        return entry.future

    def register(self, key: str, future: asyncio.Future[Any], now: float) -> None:
        """Track *future* under *key*, replacing any stale entry."""
        entry = PendingDedupEntry(future=future, created_at=now)
        self._entries[key] = entry

        previous = self._cleanups.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._cleanups[key] = self._get_loop().call_later(
            self._window * 2, self._sweep, key, entry
        )

    def _sweep(self, key: str, entry: PendingDedupEntry) -> None:
        self._cleanups.pop(key, None)
        current = self._entries.get(key)
        if current is not entry:
            return
        if self._get_loop().time() - entry.created_at > self._window:
            del self._entries[key]
            logger.debug("Dedup entry expired: %s", key)

    def clear(self) -> None:
        """Forget every entry and cancel pending sweeps."""
        for handle in self._cleanups.values():
            handle.cancel()
        self._cleanups.clear()
        self._entries.clear()
