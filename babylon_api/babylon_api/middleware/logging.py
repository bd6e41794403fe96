"""Access logging for the billing API.

One ``babylon_api.access`` record per request, tagged with the billing
area the path belongs to (``checkout``, ``webhook``, ``admin`` ...) so
webhook traffic can be filtered from customer checkout traffic.  The
request's correlation id is also published through
:data:`correlation_id_var` so every log line written while the request is
being handled (reconciler, gateway client) can carry it.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("babylon_api.access")

correlation_id_var: ContextVar[str | None] = ContextVar("babylon_correlation_id", default=None)

# Header names whose values must be masked in log output.
_SENSITIVE_HEADERS: frozenset[str] = frozenset(
    {"authorization", "cookie", "access_token", "asaas-access-token", "x-admin-token"}
)
_MASK: str = "***"

_CORRELATION_HEADER: str = "X-Correlation-ID"

# First matching prefix wins.
_AREAS: tuple[tuple[str, str], ...] = (
    ("/api/asaas/asaas-webhook", "webhook"),
    ("/api/asaas/", "checkout"),
    ("/api/admin/", "admin"),
    ("/api/settings", "admin"),
    ("/api/plans", "catalog"),
    ("/api/licenses", "account"),
    ("/api/invoices", "account"),
    ("/api/health", "ops"),
    ("/ready", "ops"),
)


def billing_area(path: str) -> str:
    """Return the billing area *path* belongs to, or ``"other"``."""
    for prefix, area in _AREAS:
        if path.startswith(prefix):
            return area
    return "other"


def _safe_headers(request: Request) -> dict[str, str]:
    """Return a copy of the request headers with sensitive values masked."""
    return {key: _MASK if key.lower() in _SENSITIVE_HEADERS else value for key, value in request.headers.items()}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its billing area, status code and duration.

    The correlation id comes from ``X-Correlation-ID`` or is a fresh UUID-4
    and is echoed on the response.  Rejected webhooks (401) are logged at
    WARNING like any other 4xx; gateway and admin credentials are masked.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(_CORRELATION_HEADER) or str(uuid.uuid4())
        token = correlation_id_var.set(correlation_id)

        start = time.monotonic()
        response: Response | None = None
        try:
            response = await call_next(request)
            response.headers[_CORRELATION_HEADER] = correlation_id
            return response
        finally:
            duration_ms = round((time.monotonic() - start) * 1000, 2)
            status_code = response.status_code if response is not None else 500

            log_payload: dict[str, Any] = {
                "area": billing_area(request.url.path),
                "method": request.method,
                "path": request.url.path,
                "query": str(request.url.query) if request.url.query else None,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "client": request.client.host if request.client else None,
                "correlation_id": correlation_id,
                "headers": _safe_headers(request),
            }
            if status_code >= 500:
                level = logging.ERROR
            elif status_code >= 400:
                level = logging.WARNING
            else:
                level = logging.INFO
            logger.log(
                level, "%s %s -> %d", request.method, request.url.path, status_code, extra={"request": log_payload}
            )
            correlation_id_var.reset(token)
