"""Prometheus metric inventory.

Every metric the service exposes is declared here; the modules that own the
behaviour import and update them. Scraped from GET /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by MetricsMiddleware)
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
    # Callback latency includes two Keycloak round-trips.
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Keycloak bridge metrics
# ---------------------------------------------------------------------------

RECONCILIATIONS = Counter(
    "keycloak_reconciliations_total",
    "Identity reconciliations by decision",
    ["decision"],  # update_linked | link_and_update | create
)

COMMAND_FAILURES = Counter(
    "keycloak_command_failures_total",
    "User commands that failed during reconciliation",
    ["command", "fatal"],  # command: edit_user | register_user
)

PROVIDER_FAILURES = Counter(
    "keycloak_provider_failures_total",
    "Failed calls to the Keycloak server",
    ["operation"],  # access_token | resource_owner
)

CALLBACKS = Counter(
    "keycloak_callbacks_total",
    "Requests to the Keycloak callback route by outcome",
    # redirect | invalid_state | provider_error | failed | <decision label>
    ["outcome"],
)
