"""OpenTelemetry bootstrap: tracing initialisation and span names.

Configures a ``TracerProvider`` with an OTLP HTTP exporter when tracing is
enabled via ``TracingConfig``.  When disabled the module is a graceful
no-op and ``tracer`` hands out non-recording spans.

Usage::

    from deepterm.infra.telemetry import SPAN_CONTEXT_AGGREGATE, tracer

    with tracer.start_as_current_span(SPAN_CONTEXT_AGGREGATE) as span:
        ...
"""

from __future__ import annotations

import logging

from opentelemetry import trace
from opentelemetry.trace import format_trace_id

from deepterm.configs.system import TracingConfig

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("deepterm")

# ---------------------------------------------------------------------------
# Span names
# ---------------------------------------------------------------------------

SPAN_CONTEXT_AGGREGATE = "context.aggregate"
SPAN_CONTEXT_WATCHLIST_QUOTES = "context.watchlist_quotes"
SPAN_CHAT_STREAM = "chat.stream"

# ---------------------------------------------------------------------------
# Span attribute keys
# ---------------------------------------------------------------------------

ATTR_CONTEXT_CACHE = "context.cache"
ATTR_CONTEXT_FAILED_SOURCES = "context.failed_sources"
ATTR_CONTEXT_SYMBOL_COUNT = "context.symbol_count"

ATTR_CHAT_MESSAGE_ID = "chat.message_id"
ATTR_CHAT_HISTORY_LEN = "chat.history_len"
ATTR_CHAT_OUTCOME = "chat.outcome"
ATTR_CHAT_REGENERATE = "chat.regenerate"


def init_telemetry(settings: TracingConfig | None = None) -> None:
    """Initialise the OTEL ``TracerProvider`` and httpx instrumentation.

    No-op when ``settings`` is ``None`` or tracing is disabled.
    """
    if settings is None or not settings.enabled:
        logger.debug("OpenTelemetry tracing disabled.")
        return

    if not settings.endpoint:
        logger.warning(
            "Tracing enabled but no endpoint configured; "
            "skipping OpenTelemetry setup."
        )
        return

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    resource = Resource.create({"service.name": settings.service_name})
    sampler = ParentBased(root=TraceIdRatioBased(settings.sample_rate))
    provider = TracerProvider(resource=resource, sampler=sampler)
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.endpoint))
    )
    trace.set_tracer_provider(provider)

    HTTPXClientInstrumentor().instrument()

    logger.info(
        "OpenTelemetry tracing initialised (service=%s).", settings.service_name
    )


def get_current_trace_id() -> str | None:
    """Return the active OTEL trace ID as a 32-char hex string, or ``None``."""
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if ctx is None or not ctx.is_valid:
        return None
    return format_trace_id(ctx.trace_id)
