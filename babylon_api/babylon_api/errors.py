"""Billing error taxonomy.

Every error carries the HTTP status it maps to, so routers and the
application-level exception handler convert it to ``{"error": message}``
without a lookup table.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse


class BillingError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(BillingError):
    """A required input is missing or malformed."""

    status_code = 400


class PreconditionError(BillingError):
    """The caller's account is not ready for the operation (e.g. no tax id)."""

    status_code = 400


class AuthError(BillingError):
    """Webhook or admin credentials did not match."""

    status_code = 401


class ForbiddenError(BillingError):
    """The endpoint is disabled or the caller lacks the required role."""

    status_code = 403


class NotFoundError(BillingError):
    """A referenced plan, user or record does not exist."""

    status_code = 404


class GatewayError(BillingError):
    """The payment gateway rejected a call or could not be reached.

    Parameters
    ----------
    message:
        Provider-supplied description, or a per-call fallback.
    status:
        HTTP status the gateway answered with, when it answered at all.
    """

    status_code = 500

    def __init__(self, message: str, status: int | None = None) -> None:
        self.gateway_status = status
        super().__init__(message)


class RetryableError(BillingError):
    """A transient condition; the caller should retry later."""

    status_code = 503


def error_response(exc: BillingError) -> JSONResponse:
    """Render *exc* as the JSON error envelope."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
