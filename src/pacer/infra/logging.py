"""Logging bootstrap for processes that embed a ``RequestScheduler``.

Every pacer module logs through ``logging.getLogger(__name__)``; the
scheduler's interesting events are dedup hits and backoff waits (DEBUG),
rate-limit trips and the backoff indicator (WARNING), and failed API
calls (ERROR).  ``setup_logging`` installs one handler on the root logger
that renders those records as either:

* **JSON lines** (``json_output=True``) with ``timestamp``, ``level``,
  ``logger`` and ``message`` keys, for log shippers.
* **Plain text** (default), for terminals and the ``pacer-probe`` CLI.

Records go to stderr by default so that a CLI's own stdout output (the
probe's summary line) stays clean.  The handler carries the ``trace_id``
and ``span_id`` of the active OpenTelemetry span, which ties a backoff
warning to the ``scheduler.dispatch`` span that hit the 429.

Calling ``setup_logging`` again replaces the handler it installed earlier
and leaves handlers owned by the host application alone.
"""

from __future__ import annotations

import logging
import sys

from opentelemetry import trace

from pacer.configs.system import LoggingConfig

_PACER_HANDLER = "pacer"

_TEXT_FORMAT = "%(levelname)-8s %(asctime)s %(name)s  %(message)s"
_TEXT_DATEFMT = "%H:%M:%S"


class _TraceContextFilter(logging.Filter):
    """Adds ``trace_id`` / ``span_id`` of the current span (or blanks)."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = trace.get_current_span().get_span_context()
        valid = ctx is not None and ctx.is_valid
        record.trace_id = format(ctx.trace_id, "032x") if valid else ""  # type: ignore[attr-defined]
        record.span_id = format(ctx.span_id, "016x") if valid else ""  # type: ignore[attr-defined]
        return True


def _build_formatter(json_output: bool) -> logging.Formatter:
    if not json_output:
        return logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_TEXT_DATEFMT)

    from pythonjsonlogger.json import JsonFormatter

    return JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s "
        "%(trace_id)s %(span_id)s",
        rename_fields={
            "asctime": "timestamp",
            "levelname": "level",
            "name": "logger",
        },
        defaults={"trace_id": "", "span_id": ""},
    )


def setup_logging(config: LoggingConfig | None = None) -> logging.Handler:
    """Install pacer's log handler on the root logger and return it."""
    if config is None:
        config = LoggingConfig()

    stream = sys.stdout if config.stream == "stdout" else sys.stderr
    handler = logging.StreamHandler(stream)
    handler.set_name(_PACER_HANDLER)
    handler.addFilter(_TraceContextFilter())
    handler.setFormatter(_build_formatter(config.json_output))

    root = logging.getLogger()
    root.setLevel(config.level.upper())
    for existing in list(root.handlers):
        if existing.get_name() == _PACER_HANDLER:
            root.removeHandler(existing)
    root.addHandler(handler)

    for name, level in config.library_levels.items():
        logging.getLogger(name).setLevel(level.upper())

    return handler
