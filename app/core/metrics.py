"""Application metrics using the Prometheus client library.

All metrics are declared here so there is one inventory of what the
service measures.  Modules import the metric they own and increment it
at the point of action.

The verification metrics are labelled by *result* rather than by
credential id: a label per credential would create one time series per
credential ever verified and blow up Prometheus storage.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    # Issuance waits on a transaction receipt, so the upper buckets are
    # wider than a typical CRUD API needs.
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Credential flows
# ---------------------------------------------------------------------------

VERIFICATIONS = Counter(
    "credential_verifications_total",
    "Verification calls by operation and verdict",
    ["operation", "result"],  # operation: id|document|presentation; result: valid|invalid|not_found
)

ISSUANCES = Counter(
    "credential_issuances_total",
    "Issuance attempts by outcome",
    ["outcome"],  # anchored|pending|unanchored|failed
)

COLLABORATOR_FAILURES = Counter(
    "collaborator_failures_total",
    "Best-effort collaborator calls that failed and were recorded in a result",
    ["source"],  # blockchain|ipfs|proof
)

IPFS_BYTES = Counter(
    "ipfs_bytes_total",
    "Bytes moved to and from the content store",
    ["direction"],  # put|get
)

GATEWAY_LATENCY = Histogram(
    "gateway_call_duration_seconds",
    "Latency of collaborator calls",
    ["source", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["key_type"],  # "user" or "ip"
)
