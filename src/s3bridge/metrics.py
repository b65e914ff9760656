"""Prometheus metrics definitions for s3bridge.

All custom metrics use the ``s3bridge_`` prefix for namespace isolation.
These are *proxy-level* metrics; the ``prometheus-fastapi-instrumentator``
package provides the HTTP-level ones (request count, duration, sizes).

Counters reset to zero on restart. Prometheus handles gaps via ``rate()``.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Proxy outcome counter  (labels: outcome)
#   object, listing, not_modified, not_found, upstream_error
# ---------------------------------------------------------------------------
proxy_requests_total: Counter | None = None

# ---------------------------------------------------------------------------
# Store errors that were not mapped to 304/404  (labels: code)
# ---------------------------------------------------------------------------
store_errors_total: Counter | None = None

# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------
bytes_sent_total: Counter | None = None
stream_aborts_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    This must be called once when metrics are enabled.  When metrics are
    disabled in config the module-level references stay ``None`` and no
    collectors are registered in the global registry.
    """
    global _initialized
    global proxy_requests_total, store_errors_total
    global bytes_sent_total, stream_aborts_total

    if _initialized:
        return

    proxy_requests_total = Counter(
        "s3bridge_proxy_requests_total",
        "Total proxied requests by outcome",
        ["outcome"],
    )

    store_errors_total = Counter(
        "s3bridge_store_errors_total",
        "Object store errors surfaced as upstream errors, by store error code",
        ["code"],
    )

    bytes_sent_total = Counter(
        "s3bridge_bytes_sent_total",
        "Total body bytes streamed to clients",
    )

    stream_aborts_total = Counter(
        "s3bridge_stream_aborts_total",
        "Responses terminated mid-stream after headers were sent",
    )

    _initialized = True


def count_outcome(outcome: str) -> None:
    """Increment the proxy outcome counter if metrics are enabled."""
    if proxy_requests_total is not None:
        proxy_requests_total.labels(outcome=outcome).inc()


def count_store_error(code: str) -> None:
    """Increment the store error counter if metrics are enabled."""
    if store_errors_total is not None:
        store_errors_total.labels(code=code or "unknown").inc()
