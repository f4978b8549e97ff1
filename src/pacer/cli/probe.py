"""Load probe: fire GET requests at an API through a ``RequestScheduler``."""

import asyncio
import logging
import sys
import time
from typing import TextIO

import httpx

from pacer.client import AuthRequired, ThrottledClient
from pacer.configs.config import AppConfig
from pacer.scheduler import (
    QueueCleared,
    RetriesExhausted,
    ThrottledBackoffObserver,
    build_scheduler,
    log_backoff_indicator,
)

logger = logging.getLogger(__name__)


class ProbeReport:
    """Tallies request outcomes and prints a one-line summary."""

    def __init__(self, output_stream: TextIO = sys.stdout) -> None:
        self.output_stream = output_stream
        self.ok = 0
        self.failed = 0
        self.errors: dict[str, int] = {}

    def record_ok(self) -> None:
        self.ok += 1

    def record_error(self, exc: BaseException) -> None:
        self.failed += 1
        name = type(exc).__name__
        self.errors[name] = self.errors.get(name, 0) + 1

    def print_summary(self, elapsed: float, stats_line: str) -> None:
        errors = ", ".join(f"{k}={v}" for k, v in sorted(self.errors.items()))
        self.output_stream.write(
            f"ok={self.ok} failed={self.failed} elapsed={elapsed:.2f}s"
            f"{' (' + errors + ')' if errors else ''}\n{stats_line}\n"
        )
        self.output_stream.flush()


async def _one(
    client: ThrottledClient,
    path: str,
    params: dict[str, int] | None,
    priority: int,
    report: ProbeReport,
) -> None:
    try:
        await client.get(path, params=params, priority=priority)
    except (httpx.HTTPError, AuthRequired, QueueCleared, RetriesExhausted) as exc:
        logger.debug("Request to %s failed: %s", path, exc)
        report.record_error(exc)
    else:
        report.record_ok()


async def main(
    config: AppConfig,
    path: str,
    count: int,
    priority: int = 0,
    unique: bool = False,
    output_stream: TextIO = sys.stdout,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProbeReport:
    """Send *count* GETs for *path* and report how the scheduler coped.

    Identical GETs are deduplicated by the scheduler; *unique* adds a
    distinct query parameter to each so every request reaches the API.
    """
    observer = ThrottledBackoffObserver(
        log_backoff_indicator, interval=config.notifier.throttle
    )
    scheduler = build_scheduler(config.scheduler, name="probe", observer=observer)
    report = ProbeReport(output_stream)

    start = time.monotonic()
    async with scheduler, ThrottledClient(
        scheduler, config.client, transport=transport
    ) as client:
        await asyncio.gather(
            *(
                _one(client, path, {"probe": i} if unique else None, priority, report)
                for i in range(count)
            )
        )
        stats = scheduler.get_stats()

    report.print_summary(
        time.monotonic() - start,
        f"queue={stats.queue_length} active={stats.active_requests} "
        f"backing_off={stats.is_backing_off} "
        f"remaining={stats.backoff_remaining:.2f}s",
    )
    return report
