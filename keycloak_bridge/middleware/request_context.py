"""Request context middleware.

Every request gets an ID (the client's X-Request-ID, or a fresh UUID), held
in a ContextVar so any logger in the async call chain can tag its records
with it. The callback handler additionally sets subject_var once it knows
which Keycloak subject it is reconciling, so the reconciliation log lines
for one login can be pulled out of an interleaved stream.

ContextVars rather than thread-locals: several requests share one thread
under asyncio, and each task gets its own copy of the variable.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
subject_var: ContextVar[str] = ContextVar("subject", default="-")


class RequestContextFilter(logging.Filter):
    """Copies the context variables onto each LogRecord before formatting.

    setup_logging() attaches it to the output handler. Logger-level filters
    only see records created on that logger, so the root logger would miss
    everything propagated from module loggers.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        record.subject = subject_var.get("-")  # type: ignore[attr-defined]
        return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns the request ID, times the request and logs one summary line."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        subject_var.set("-")

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        # request.url.path only: the callback query string carries the code.
        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
