"""Scheduler exceptions and shared types."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

T = TypeVar("T")

# A zero-argument coroutine factory; called once per attempt.
Operation = Callable[[], Awaitable[T]]

# ``(is_backing_off, remaining_seconds)``
BackoffObserver = Callable[[bool, float], Any]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PacerError(Exception):
    """Base class for errors raised by the scheduler itself."""


class RateLimitError(PacerError):
    """Raised by an operation to signal the upstream answered 429.

    Any exception carrying a 429 status or a rate-limit message is treated
    the same way (see ``pacer.scheduler.classify``); this class exists for
    operations that want to signal it explicitly.
    """

    status = 429

    def __init__(
        self, message: str = "Too many requests", *, retry_after: Optional[float] = None
    ) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RetriesExhausted(PacerError):
    """Raised when an operation stays rate limited past the retry cap."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"Still rate limited after {attempts} attempt(s): {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


class QueueCleared(PacerError):
    """Delivered to every queued operation when the queue is cleared."""

    def __init__(self, message: str = "Request cancelled - queue cleared") -> None:
        super().__init__(message)
