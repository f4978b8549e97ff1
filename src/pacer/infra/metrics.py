"""Prometheus metrics for request schedulers.

All metrics use the ``pacer_`` prefix and carry a ``scheduler`` label so
several schedulers in one process (one per upstream API) stay apart.
Exposing them (``prometheus_client.start_http_server`` or an ASGI app)
is left to the embedding application.
"""

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Queue and concurrency
# ---------------------------------------------------------------------------

QUEUE_LENGTH = Gauge(
    "pacer_queue_length",
    "Operations waiting in the admission queue",
    ["scheduler"],
)

ACTIVE_REQUESTS = Gauge(
    "pacer_active_requests",
    "Operations currently executing through the scheduler",
    ["scheduler"],
)

QUEUE_WAIT_SECONDS = Histogram(
    "pacer_queue_wait_seconds",
    "Time between submission and dispatch",
    ["scheduler"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)

# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

DISPATCHES_TOTAL = Counter(
    "pacer_dispatches_total",
    "Dispatched operations by outcome",
    ["scheduler", "outcome"],  # ok | error | rate_limited | exhausted | cancelled
)

BYPASS_TOTAL = Counter(
    "pacer_bypass_total",
    "Operations executed outside the admission queue",
    ["scheduler"],
)

DEDUP_HITS_TOTAL = Counter(
    "pacer_dedup_hits_total",
    "Submissions collapsed onto an in-flight future",
    ["scheduler"],
)

QUEUE_CLEARED_TOTAL = Counter(
    "pacer_queue_cleared_total",
    "Queued operations rejected by clear_queue()",
    ["scheduler"],
)

# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

BACKOFF_TRIPS_TOTAL = Counter(
    "pacer_backoff_trips_total",
    "Rate-limit signals that armed the backoff window",
    ["scheduler"],
)

BACKOFF_WINDOW_SECONDS = Histogram(
    "pacer_backoff_window_seconds",
    "Length of each armed backoff window",
    ["scheduler"],
    buckets=(0.5, 1, 2, 4, 8, 16, 30, 60),
)
