"""JSON log formatter.

Emits each log record as a single-line JSON object.  Activate with
``BABYLON_STRUCTURED_LOGGING=true``.

Output schema per line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "babylon_api.services.webhook_reconciler",
        "message": "Invoice inv-1 paid (payment pay_1)",
        "correlation_id": "3f2c...",   // while handling an HTTP request
        "billing": {"payment_id": "pay_1", "event": "PAYMENT_CONFIRMED"},
        "request": { ... },            // access log lines only
        "exc_info": "Traceback ..."    // exceptions only
    }

``billing`` collects the identifiers passed through ``extra=`` so a single
payment or subscription can be traced across services by field instead of
by message text.
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

from babylon_api.middleware.logging import correlation_id_var

BILLING_FIELDS: tuple[str, ...] = (
    "user_id",
    "plan_id",
    "subscription_id",
    "payment_id",
    "invoice_id",
    "license_id",
    "event",
)


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id is not None:
            payload["correlation_id"] = correlation_id

        billing = {name: getattr(record, name) for name in BILLING_FIELDS if getattr(record, name, None) is not None}
        if billing:
            payload["billing"] = billing

        request_data = getattr(record, "request", None)
        if request_data is not None:
            payload["request"] = request_data

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_json_logging(level: int = logging.INFO) -> None:
    """Replace the root handlers with one JSON-formatted stream handler."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
