"""Prometheus middleware: request count, duration and in-flight gauge.

The endpoint label is the URL path. The only parameterised route is the
callback, and its parameters live in the query string, so label
cardinality stays bounded.

Callback requests are also counted by outcome. A completed login is
labelled with the reconciliation decision the route leaves in
request.state; every other outcome is read off the status code.
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from keycloak_bridge.core.metrics import (
    ACTIVE_REQUESTS,
    CALLBACKS,
    REQUEST_COUNT,
    REQUEST_DURATION,
)

CALLBACK_PATH = "/auth/keycloak"

_OUTCOME_BY_STATUS = {
    "302": "redirect",
    "400": "invalid_state",
    "502": "provider_error",
}


def callback_outcome(request: Request, status_code: str) -> str:
    decision = getattr(request.state, "keycloak_decision", None)
    if decision is not None and status_code == "200":
        return decision
    return _OUTCOME_BY_STATUS.get(status_code, "failed")


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus metrics for every HTTP request except /metrics."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code = "500"

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            duration = time.monotonic() - start
            ACTIVE_REQUESTS.dec()
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=path,
                status_code=status_code,
            ).inc()
            REQUEST_DURATION.labels(method=request.method, endpoint=path).observe(
                duration
            )
            if path == CALLBACK_PATH:
                CALLBACKS.labels(outcome=callback_outcome(request, status_code)).inc()

        return response
