"""OpenTelemetry bootstrap: tracing initialisation and span names.

Configures a ``TracerProvider`` with an OTLP HTTP exporter when tracing is
enabled via ``TracingConfig``.  When disabled the module is a graceful
no-op: ``tracer`` resolves to the API's no-op tracer and spans cost
almost nothing.

Auto-instrumentation wired here:

- **httpx** (outbound HTTP spans for ``pacer.client``).

Usage::

    from pacer.infra.telemetry import SPAN_SCHEDULER_DISPATCH, tracer

    with tracer.start_as_current_span(SPAN_SCHEDULER_DISPATCH) as span:
        ...
"""

from __future__ import annotations

import logging

from opentelemetry import trace

from pacer.configs.system import TracingConfig

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("pacer")

# ---------------------------------------------------------------------------
# Span names
# ---------------------------------------------------------------------------

SPAN_SCHEDULER_DISPATCH = "scheduler.dispatch"
SPAN_SCHEDULER_BYPASS = "scheduler.bypass"
SPAN_CLIENT_REQUEST = "client.request"

# ---------------------------------------------------------------------------
# Span attribute keys
# ---------------------------------------------------------------------------

ATTR_SCHEDULER_NAME = "scheduler.name"
ATTR_SCHEDULER_PRIORITY = "scheduler.priority"
ATTR_SCHEDULER_ATTEMPT = "scheduler.attempt"
ATTR_SCHEDULER_KEY = "scheduler.key"
ATTR_SCHEDULER_QUEUE_WAIT = "scheduler.queue_wait"
ATTR_SCHEDULER_OUTCOME = "scheduler.outcome"

ATTR_CLIENT_METHOD = "client.method"
ATTR_CLIENT_PATH = "client.path"
ATTR_CLIENT_STATUS = "client.status"


def init_telemetry(settings: TracingConfig | None = None) -> None:
    """Initialise the OTEL ``TracerProvider``.

    Parameters
    ----------
    settings:
        Tracing configuration.  When ``None`` or ``enabled`` is
        ``False``, this function is a no-op.
    """
    if settings is None or not settings.enabled:
        logger.info("OpenTelemetry tracing disabled.")
        return

    if not settings.endpoint:
        logger.warning(
            "Tracing enabled but no endpoint configured: "
            "skipping OpenTelemetry setup."
        )
        return

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    resource = Resource.create({"service.name": settings.service_name})

    sampler = ParentBased(root=TraceIdRatioBased(settings.sample_rate))
    provider = TracerProvider(resource=resource, sampler=sampler)

    exporter = OTLPSpanExporter(
        endpoint=settings.endpoint,
        headers=dict(settings.headers),
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    # --- Auto-instrumentation for outbound httpx calls ---
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()

    logger.info(
        "OpenTelemetry tracing initialised (service=%s).", settings.service_name
    )

