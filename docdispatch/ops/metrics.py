from __future__ import annotations

from ..metrics.registry import BATCH_LATENCY_SECONDS, BATCH_SIZE, BATCH_TOTAL, ITEMS_TOTAL


def observe_batch(operation: str, status: str, size: int, latency_s: float) -> None:
    """
    Record one bulk call.

    status is "success" when the call completed (item errors included) and
    "error" when it failed wholesale.
    """
    BATCH_TOTAL.labels(operation=operation, status=status).inc()
    BATCH_LATENCY_SECONDS.labels(operation=operation).observe(latency_s)
    BATCH_SIZE.labels(operation=operation).observe(size)


def observe_item(operation: str, outcome: str) -> None:
    ITEMS_TOTAL.labels(operation=operation, outcome=outcome).inc()
