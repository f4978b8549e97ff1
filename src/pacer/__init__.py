"""pacer: client-side admission control for calls to rate-limited APIs."""

from pacer.client import AuthRequired, ThrottledClient
from pacer.scheduler import (
    QueueCleared,
    RateLimitError,
    RequestScheduler,
    RetriesExhausted,
    SchedulerStats,
    ThrottledBackoffObserver,
    build_scheduler,
    is_rate_limit_error,
    log_backoff_indicator,
)

__all__ = [
    "AuthRequired",
    "QueueCleared",
    "RateLimitError",
    "RequestScheduler",
    "RetriesExhausted",
    "SchedulerStats",
    "ThrottledBackoffObserver",
    "ThrottledClient",
    "build_scheduler",
    "is_rate_limit_error",
    "log_backoff_indicator",
]
