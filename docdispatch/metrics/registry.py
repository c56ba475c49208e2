from __future__ import annotations

from prometheus_client import Counter, Histogram

BATCH_TOTAL = Counter(
    "docdispatch_batch_total",
    "Bulk calls submitted to the document store",
    ["operation", "status"],
)

BATCH_LATENCY_SECONDS = Histogram(
    "docdispatch_batch_latency_seconds",
    "Latency of one bulk call, submission to reassembled results",
    ["operation"],
)

BATCH_SIZE = Histogram(
    "docdispatch_batch_size",
    "Number of store calls per bulk call",
    ["operation"],
    buckets=(1, 2, 5, 10, 25, 50, 100, 250, 500, 1000),
)

ITEMS_TOTAL = Counter(
    "docdispatch_items_total",
    "Per-item outcomes of store calls",
    ["operation", "outcome"],
)
