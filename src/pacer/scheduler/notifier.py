"""Backoff observer slot and ready-made observers.

A scheduler holds exactly one observer; registering another replaces it
and ``None`` empties the slot.  The observer is called with
``(True, remaining_seconds)`` each time the scheduler *enters* a backoff
window, never on the dispatch attempts suspended inside one.

Consumers that surface the notice to a person should rate limit it
further; ``ThrottledBackoffObserver`` forwards at most one notice per
``interval`` seconds.
"""

from __future__ import annotations

import inspect
import logging
import math
import time
from collections.abc import Callable
from datetime import timedelta

from .base import BackoffObserver

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE = timedelta(seconds=5)


class BackoffNotifier:
    """Single-slot registry for a ``BackoffObserver``."""

    def __init__(self) -> None:
        self._observer: BackoffObserver | None = None

    @property
    def observer(self) -> BackoffObserver | None:
        return self._observer

    def register(self, observer: BackoffObserver | None) -> None:
        """Install *observer*, replacing the previous one (``None`` clears)."""
        self._observer = observer

    def notify(self, is_backing_off: bool, remaining: float) -> None:
        """Call the observer; its failures are logged and swallowed."""
        observer = self._observer
        if observer is None:
            return
        try:
            result = observer(is_backing_off, remaining)
            if inspect.isawaitable(result):
                logger.warning(
                    "Backoff observer %r returned an awaitable; observers "
                    "must be synchronous",
                    observer,
                )
                close = getattr(result, "close", None)
                if close is not None:
                    close()
        except Exception:
            logger.exception("Backoff observer %r raised", observer)


class ThrottledBackoffObserver:
    """Forward backoff notices to *target* at most once per *interval*.

    Notices arriving sooner than *interval* after the last forwarded one
    are dropped.  ``is_backing_off=False`` notices are always forwarded.
    """

    def __init__(
        self,
        target: BackoffObserver,
        interval: timedelta = DEFAULT_THROTTLE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._target = target
        self._interval = interval.total_seconds()
        self._clock = clock
        self._last_forwarded: float | None = None

    def __call__(self, is_backing_off: bool, remaining: float) -> None:
        if is_backing_off:
            now = self._clock()
            if (
                self._last_forwarded is not None
                and now - self._last_forwarded < self._interval
            ):
                return
            self._last_forwarded = now
        self._target(is_backing_off, remaining)


def log_backoff_indicator(is_backing_off: bool, remaining: float) -> None:
    """Observer that surfaces backoff as a warning log line."""
    if not is_backing_off:
        return
    logger.warning(
        "Slowing down requests... High traffic detected. Retrying in %ds.",
        math.ceil(remaining),
    )
