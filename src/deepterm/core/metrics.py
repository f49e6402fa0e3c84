"""Prometheus metrics for the assistant engine.

All metrics use the ``deepterm_`` prefix.  Nothing here starts an HTTP
exporter; embedders expose ``prometheus_client.REGISTRY`` however they
like (``start_http_server``, a web framework route, a push gateway).
"""

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Context aggregation metrics
# ---------------------------------------------------------------------------

CONTEXT_SOURCE_FETCHES_TOTAL = Counter(
    "deepterm_context_source_fetches_total",
    "Upstream context queries, by source and outcome",
    ["source", "status"],  # status: ok | absent
)

CONTEXT_CACHE_LOOKUPS_TOTAL = Counter(
    "deepterm_context_cache_lookups_total",
    "Global context lookups, by cache outcome",
    ["result"],  # hit | inflight | miss
)

CONTEXT_AGGREGATION_SECONDS = Histogram(
    "deepterm_context_aggregation_seconds",
    "Wall-clock duration of a full global-context fan-out",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10),
)

# ---------------------------------------------------------------------------
# Chat stream metrics
# ---------------------------------------------------------------------------

STREAM_EVENTS_TOTAL = Counter(
    "deepterm_stream_events_total",
    "Decoded stream events, by event type",
    ["event_type"],  # metadata | content | error | done
)

STREAM_MALFORMED_FRAMES_TOTAL = Counter(
    "deepterm_stream_malformed_frames_total",
    "Prefixed stream lines that could not be decoded and were skipped",
)

STREAM_OUTCOMES_TOTAL = Counter(
    "deepterm_stream_outcomes_total",
    "Finished assistant streams, by outcome",
    ["outcome"],  # complete | error | cancelled
)

STREAM_DURATION_SECONDS = Histogram(
    "deepterm_stream_duration_seconds",
    "Duration of an assistant stream from request to finalisation",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)
