"""RequestScheduler: admission queue + dispatch loop.

The scheduler owns every piece of mutable state (queue, counters,
backoff window, dedup registry) and mutates it only from synchronous code
running on one event loop, so each admission check and the mutation that
follows it are atomic.  Wrapped operations run in their own tasks and
never hold scheduler state while they await.

The dispatch loop (``_pump``) is not a background task.  It is re-entered
when an operation is submitted, when a dispatched operation settles, and
from a single ``call_at`` wake-up armed for the end of a backoff window or
min-delay gap.

Usage::

    scheduler = build_scheduler()
    scheduler.register_backoff_observer(log_backoff_indicator)

    data = await scheduler.submit(
        lambda: client.get("/items"),
        key="GET:/items",     # collapse identical concurrent reads
        priority=10,          # higher runs first
    )
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from opentelemetry.trace import Span

from pacer.configs.config import get_app_config
from pacer.configs.system import SchedulerConfig
from pacer.infra.metrics import (
    ACTIVE_REQUESTS,
    BACKOFF_TRIPS_TOTAL,
    BACKOFF_WINDOW_SECONDS,
    BYPASS_TOTAL,
    DEDUP_HITS_TOTAL,
    DISPATCHES_TOTAL,
    QUEUE_CLEARED_TOTAL,
    QUEUE_LENGTH,
    QUEUE_WAIT_SECONDS,
)
from pacer.infra.telemetry import (
    ATTR_SCHEDULER_ATTEMPT,
    ATTR_SCHEDULER_KEY,
    ATTR_SCHEDULER_NAME,
    ATTR_SCHEDULER_OUTCOME,
    ATTR_SCHEDULER_PRIORITY,
    ATTR_SCHEDULER_QUEUE_WAIT,
    SPAN_SCHEDULER_BYPASS,
    SPAN_SCHEDULER_DISPATCH,
    tracer,
)

from .backoff import BackoffController
from .base import BackoffObserver, Operation, QueueCleared, RetriesExhausted, T
from .classify import is_rate_limit_error, retry_after_of
from .dedup import Deduplicator
from .notifier import BackoffNotifier
from .queue import AdmissionQueue, QueuedOperation

logger = logging.getLogger(__name__)

OUTCOME_OK = "ok"
OUTCOME_ERROR = "error"
OUTCOME_RATE_LIMITED = "rate_limited"
OUTCOME_EXHAUSTED = "exhausted"
OUTCOME_CANCELLED = "cancelled"


@dataclass(frozen=True)
class SchedulerStats:
    """Read-only snapshot returned by ``RequestScheduler.get_stats``."""

    queue_length: int
    active_requests: int
    is_backing_off: bool
    backoff_remaining: float


class RequestScheduler:
    """Client-side admission controller for calls to a shared backend."""

    def __init__(
        self, config: SchedulerConfig | None = None, *, name: str = "default"
    ) -> None:
        if config is None:
            config = SchedulerConfig()
        self._name = name
        self._max_concurrent = config.max_concurrent
        self._min_delay = config.min_delay.total_seconds()
        self._retry_boost = config.retry_priority_boost
        self._max_retries = config.max_rate_limit_retries

        self._backoff = BackoffController(
            initial=config.initial_backoff.total_seconds(),
            maximum=config.max_backoff.total_seconds(),
            multiplier=config.backoff_multiplier,
        )
        self._dedup = Deduplicator(config.dedupe_window.total_seconds())
        self._queue = AdmissionQueue()
        self._notifier = BackoffNotifier()

        self._active = 0
        self._last_dispatch = float("-inf")
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

        self._m_queue_length = QUEUE_LENGTH.labels(scheduler=name)
        self._m_active = ACTIVE_REQUESTS.labels(scheduler=name)
        self._m_queue_wait = QUEUE_WAIT_SECONDS.labels(scheduler=name)
        self._m_bypass = BYPASS_TOTAL.labels(scheduler=name)
        self._m_dedup_hits = DEDUP_HITS_TOTAL.labels(scheduler=name)
        self._m_cleared = QUEUE_CLEARED_TOTAL.labels(scheduler=name)
        self._m_backoff_trips = BACKOFF_TRIPS_TOTAL.labels(scheduler=name)
        self._m_backoff_window = BACKOFF_WINDOW_SECONDS.labels(scheduler=name)

    @property
    def name(self) -> str:
        return self._name

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    async def submit(
        self,
        execute: Operation[T],
        *,
        key: Optional[str] = None,
        priority: int = 0,
        bypass_queue: bool = False,
    ) -> T:
        """Run *execute* once admission control allows and return its result.

        Args:
            execute: Zero-argument coroutine factory.  It may be called more
                than once when the upstream answers 429.
            key: Deduplication key.  Only pass one for idempotent reads;
                identical keys within the dedupe window share one call.
            priority: Higher values are dispatched first.
            bypass_queue: Run immediately, skipping every admission and
                backoff check (e.g. an auth token refresh).

        Raises:
            QueueCleared: if ``clear_queue()`` ran while this was queued.
            RetriesExhausted: if ``max_rate_limit_retries`` is exceeded.
            Exception: whatever *execute* raised, for non rate-limit errors.
        """
        if bypass_queue:
            return await self._run_bypass(execute)
        # Shielded so one cancelled waiter does not cancel a shared future.
        return await asyncio.shield(
            self.enqueue(execute, key=key, priority=priority)
        )

    def enqueue(
        self,
        execute: Operation[T],
        *,
        key: Optional[str] = None,
        priority: int = 0,
        bypass_queue: bool = False,
    ) -> asyncio.Future[T]:
        """Queue *execute* and return the future its callers share.

        Must be called from the event loop the scheduler runs on.
        """
        if self._closed:
            raise RuntimeError(f"Scheduler {self._name!r} is closed")
        loop = self._get_loop()

        if bypass_queue:
            return self._track(loop.create_task(self._run_bypass(execute)))

        now = loop.time()
        if key is not None:
            shared = self._dedup.lookup(key, now)
            if shared is not None:
                logger.debug("Deduplicating request: %s", key)
                self._m_dedup_hits.inc()
                return shared

        future: asyncio.Future[T] = loop.create_future()
        op = QueuedOperation(
            execute=execute,
            future=future,
            key=key,
            priority=priority,
            base_priority=priority,
            enqueued_at=now,
        )
        self._queue.push(op)
        if key is not None:
            self._dedup.register(key, future, now)

        self._update_gauges()
        self._pump()
        return future

    def get_stats(self) -> SchedulerStats:
        """Snapshot of queue length, in-flight count and backoff state."""
        now = self._now()
        return SchedulerStats(
            queue_length=len(self._queue),
            active_requests=self._active,
            is_backing_off=self._backoff.is_backing_off(now),
            backoff_remaining=self._backoff.remaining(now),
        )

    def reset_backoff(self) -> None:
        """End the current backoff window and reset its growth.

        Meant for explicit "try again" actions; queued work resumes
        immediately.
        """
        was_backing_off = self._backoff.is_backing_off(self._now())
        self._backoff.reset()
        logger.info("Backoff reset (scheduler=%s)", self._name)
        if was_backing_off:
            self._notifier.notify(False, 0.0)
        self._pump()

    def clear_queue(self) -> int:
        """Reject every queued operation with ``QueueCleared``.

        In-flight operations are not affected.  Returns the number of
        operations rejected.
        """
        cleared = self._queue.drain()
        self._dedup.clear()
        for op in cleared:
            if not op.future.done():
                op.future.set_exception(QueueCleared())
        if cleared:
            logger.info(
                "Cleared %d queued request(s) (scheduler=%s)",
                len(cleared),
                self._name,
            )
            self._m_cleared.inc(len(cleared))
        self._update_gauges()
        return len(cleared)

    def register_backoff_observer(self, observer: BackoffObserver | None) -> None:
        """Install the single backoff observer (``None`` removes it)."""
        self._notifier.register(observer)

    async def aclose(self) -> None:
        """Reject queued work, cancel in-flight work and stop timers."""
        if self._closed:
            return
        self._closed = True
        if self._wakeup is not None:
            self._wakeup.cancel()
            self._wakeup = None
        self.clear_queue()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> RequestScheduler:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # -----------------------------------------------------------------
    # Dispatch loop
    # -----------------------------------------------------------------

    def _pump(self) -> None:
        """Dispatch queued operations while every admission check passes."""
        while self._queue and not self._closed:
            if self._active >= self._max_concurrent:
                return

            now = self._now()
            if self._backoff.is_backing_off(now):
                logger.debug(
                    "In backoff, waiting %.3fs", self._backoff.remaining(now)
                )
                self._schedule_wakeup(self._backoff.until)
                return

            ready_at = self._last_dispatch + self._min_delay
            if now < ready_at:
                self._schedule_wakeup(ready_at)
                return

            op = self._queue.pop()
            if op is None:
                return
            if op.future.done():
                # Cancelled by its caller while queued.
                continue
            self._dispatch(op, now)

        self._update_gauges()

    def _dispatch(self, op: QueuedOperation, now: float) -> None:
        self._active += 1
        self._last_dispatch = now
        op.attempts += 1
        self._m_queue_wait.observe(now - op.enqueued_at)
        self._update_gauges()
        self._track(self._get_loop().create_task(self._run(op, now)))

    def _schedule_wakeup(self, when: float) -> None:
        """Arm the single wake-up timer; an earlier one wins."""
        if self._wakeup is not None:
            if self._wakeup.when() <= when:
                return
            self._wakeup.cancel()
        self._wakeup = self._get_loop().call_at(when, self._on_wakeup)

    def _on_wakeup(self) -> None:
        self._wakeup = None
        self._pump()

    async def _run(self, op: QueuedOperation, dispatched_at: float) -> None:
        with tracer.start_as_current_span(SPAN_SCHEDULER_DISPATCH) as span:
            span.set_attribute(ATTR_SCHEDULER_NAME, self._name)
            span.set_attribute(ATTR_SCHEDULER_PRIORITY, op.priority)
            span.set_attribute(ATTR_SCHEDULER_ATTEMPT, op.attempts)
            span.set_attribute(
                ATTR_SCHEDULER_QUEUE_WAIT, dispatched_at - op.enqueued_at
            )
            if op.key is not None:
                span.set_attribute(ATTR_SCHEDULER_KEY, op.key)

            try:
                result = await op.execute()
            except asyncio.CancelledError:
                self._release(span, OUTCOME_CANCELLED)
                if not op.future.done():
                    op.future.cancel()
                raise
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    self._release(span, OUTCOME_ERROR)
                    self._fail(op, exc)
                elif self._retries_exhausted(op):
                    self._release(span, OUTCOME_EXHAUSTED)
                    self._arm_backoff(exc)
                    error = RetriesExhausted(op.attempts, exc)
                    error.__cause__ = exc
                    self._fail(op, error)
                else:
                    self._release(span, OUTCOME_RATE_LIMITED)
                    self._arm_backoff(exc)
                    self._requeue(op)
            else:
                self._release(span, OUTCOME_OK)
                self._backoff.record_success()
                if not op.future.done():
                    op.future.set_result(result)

        self._pump()

    # -----------------------------------------------------------------
    # Settlement helpers
    # -----------------------------------------------------------------

    def _release(self, span: Span, outcome: str) -> None:
        self._active -= 1
        span.set_attribute(ATTR_SCHEDULER_OUTCOME, outcome)
        DISPATCHES_TOTAL.labels(scheduler=self._name, outcome=outcome).inc()
        self._update_gauges()

    def _fail(self, op: QueuedOperation, error: BaseException) -> None:
        if not op.future.done():
            op.future.set_exception(error)

    def _retries_exhausted(self, op: QueuedOperation) -> bool:
        return self._max_retries is not None and op.attempts > self._max_retries

    def _arm_backoff(self, error: BaseException) -> None:
        now = self._now()
        was_backing_off = self._backoff.is_backing_off(now)
        window = self._backoff.trip(now, retry_after_of(error))
        logger.warning(
            "Rate limit hit, backing off for %.3fs (scheduler=%s)",
            window,
            self._name,
        )
        self._m_backoff_trips.inc()
        self._m_backoff_window.observe(window)
        if not was_backing_off:
            self._notifier.notify(True, self._backoff.remaining(now))

    def _requeue(self, op: QueuedOperation) -> None:
        if op.future.done():
            return
        op.priority = op.base_priority + self._retry_boost
        op.enqueued_at = self._now()
        self._queue.push_front(op)
        logger.debug(
            "Requeued %s at priority %d (attempt %d)",
            op.key or "operation",
            op.priority,
            op.attempts,
        )
        self._update_gauges()

    async def _run_bypass(self, execute: Operation[T]) -> T:
        self._m_bypass.inc()
        with tracer.start_as_current_span(SPAN_SCHEDULER_BYPASS) as span:
            span.set_attribute(ATTR_SCHEDULER_NAME, self._name)
            return await execute()

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _now(self) -> float:
        # ``loop.time()`` is ``time.monotonic()`` on the default loops.
        return self._loop.time() if self._loop is not None else time.monotonic()

    def _track(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _update_gauges(self) -> None:
        self._m_queue_length.set(len(self._queue))
        self._m_active.set(self._active)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_scheduler(
    config: SchedulerConfig | None = None,
    *,
    name: str = "default",
    observer: BackoffObserver | None = None,
) -> RequestScheduler:
    """Construct a ``RequestScheduler`` for the application's composition root.

    When *config* is omitted the ``scheduler`` section of ``AppConfig`` is
    used.  Build one scheduler per upstream API and pass it to the code
    that calls that API.
    """
    if config is None:
        config = get_app_config().scheduler

    scheduler = RequestScheduler(config, name=name)
    if observer is not None:
        scheduler.register_backoff_observer(observer)

    logger.info(
        "RequestScheduler %s: max_concurrent=%d, min_delay=%s, "
        "backoff=%s..%s x%.1f, dedupe_window=%s",
        name,
        config.max_concurrent,
        config.min_delay,
        config.initial_backoff,
        config.max_backoff,
        config.backoff_multiplier,
        config.dedupe_window,
    )
    return scheduler
