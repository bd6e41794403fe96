"""Read-only payment status lookup against the gateway."""

from __future__ import annotations

import logging
from typing import Any

from babylon_api.errors import ValidationError
from babylon_api.services.asaas_client import AsaasClient

logger = logging.getLogger(__name__)

# Gateway statuses that mean the money has been received.
PAID_STATUSES: frozenset[str] = frozenset({"RECEIVED", "CONFIRMED", "RECEIVED_IN_CASH"})


class PaymentVerifier:
    """Answer "has this payment been paid yet" polls from the client."""

    def __init__(self, client: AsaasClient) -> None:
        self._client = client

    async def verify_payment(self, payment_id: str | None) -> dict[str, Any]:
        """Fetch *payment_id* from the gateway and report whether it is paid.

        Local state is not touched; activation happens only through the
        webhook.

        Raises
        ------
        ValidationError
            *payment_id* is empty.
        GatewayError
            The gateway lookup failed.
        """
        if not payment_id:
            raise ValidationError("paymentId is required")

        payment = await self._client.get_payment(payment_id)
        status = payment.get("status")
        paid = status in PAID_STATUSES
        logger.debug("Payment %s status=%s paid=%s", payment_id, status, paid)
        return {"success": paid, "status": status, "payment": payment}
