"""Prometheus instrumentation for request authentication.

Exports a registry and helper functions the middleware and body cache call.
Labels stay low-cardinality: scheme, result and the collapsed failure reason.
"""
from __future__ import annotations
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Registry must be created before metric objects reference it.
REGISTRY = CollectorRegistry()

AUTH_COUNTER = Counter(
    "snws_auth_requests_total",
    "Authentication attempts by scheme, result and failure reason.",
    ["scheme", "result", "reason"],
    registry=REGISTRY,
)
LOOKBACK_HIST = Histogram(
    "snws_auth_lookback_days",
    "Age in days of the signing key that verified a request (0 = same day).",
    buckets=(0, 1, 2, 3, 4, 5, 6, 7),
    registry=REGISTRY,
)
BODY_HIST = Histogram(
    "snws_body_cache_bytes",
    "Request body sizes seen by the content digest cache.",
    buckets=(0, 512, 4096, 65536, 262144, 1048576, 4194304, 10485760),
    registry=REGISTRY,
)
TIER_COUNTER = Counter(
    "snws_body_cache_tier_total",
    "Final storage tier of cached request bodies.",
    ["tier"],
    registry=REGISTRY,
)


def observe_auth(*, scheme: str, verified: bool, reason: str = "", key_age_days: int | None = None):
    result = "ok" if verified else "fail"
    AUTH_COUNTER.labels(scheme=scheme or "none", result=result, reason=reason or "none").inc()
    if verified and key_age_days is not None:
        LOOKBACK_HIST.observe(key_age_days)


def observe_body(*, tier: str, byte_count: int):
    TIER_COUNTER.labels(tier=tier).inc()
    BODY_HIST.observe(byte_count)


def prometheus_latest() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
