"""Outbound request scheduling for calls to a shared, rate-limited backend.

Layers, leaves first:

1. **BackoffController**: one exponentially growing cool-down window,
   armed by 429 responses and reset by the next success.

2. **Deduplicator**: identical keys submitted within ``dedupe_window``
   share one in-flight future.

3. **AdmissionQueue**: pending operations ordered by priority; retried
   operations jump to the front of their band.

4. **RequestScheduler**: the dispatch loop.  Admits the head of the queue
   when concurrency, min-delay spacing and backoff allow, runs it, and
   routes the outcome back to the caller's future or, on a rate-limit
   signal, back into the queue.

5. **BackoffNotifier**: single observer slot notified when the scheduler
   enters a backoff window.
"""

from .backoff import BackoffController
from .base import (
    BackoffObserver,
    Operation,
    PacerError,
    QueueCleared,
    RateLimitError,
    RetriesExhausted,
)
from .classify import is_rate_limit_error, retry_after_of
from .dedup import Deduplicator
from .notifier import BackoffNotifier, ThrottledBackoffObserver, log_backoff_indicator
from .queue import AdmissionQueue, QueuedOperation
from .scheduler import RequestScheduler, SchedulerStats, build_scheduler

__all__ = [
    "AdmissionQueue",
    "BackoffController",
    "BackoffNotifier",
    "BackoffObserver",
    "Deduplicator",
    "Operation",
    "PacerError",
    "QueueCleared",
    "QueuedOperation",
    "RateLimitError",
    "RequestScheduler",
    "RetriesExhausted",
    "SchedulerStats",
    "ThrottledBackoffObserver",
    "build_scheduler",
    "is_rate_limit_error",
    "log_backoff_indicator",
    "retry_after_of",
]
