"""Prometheus counters for the gating path."""

from prometheus_client import CollectorRegistry, Counter

registry = CollectorRegistry()

oracle_requests = Counter(
    "oracle_requests_total",
    "Balance oracle RPC calls",
    ["method", "outcome"],
    registry=registry,
)
holdings_lookups = Counter(
    "holdings_lookups_total",
    "Holdings lookups by where the answer came from",
    ["source"],
    registry=registry,
)
link_resolutions = Counter(
    "link_resolutions_total",
    "Link resolutions by resulting state",
    ["state"],
    registry=registry,
)
