from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)
from fastapi import Response


generation_requests = Counter(
    "generation_requests_total",
    "Text generation dispatches by operation and outcome",
    ["operation", "model", "outcome"],
)

generation_latency = Histogram(
    "generation_latency_seconds",
    "Wall-clock time of a dispatch, cache hits included",
    ["operation"],
    buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

llm_tokens = Counter(
    "llm_tokens_total",
    "Total LLM tokens consumed",
    ["model"],
)

cache_lookups = Counter(
    "generation_cache_lookups_total",
    "Response cache lookups by result",
    ["result"],
)

retry_attempts = Counter(
    "generation_retries_total",
    "Backend attempts that were retried, by error kind",
    ["backend", "error_kind"],
)

batch_items = Counter(
    "generation_batch_items_total",
    "Batch items by outcome",
    ["outcome"],
)


def metrics_response() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
