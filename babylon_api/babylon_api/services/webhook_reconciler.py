"""Apply gateway payment notifications to local invoice and license state.

A confirmed payment turns its invoice ``Pago`` and its license ``Ativa``
(even one already expired because a later purchase was paid first),
expires every other live license of the same user and points the user's
profile at the new license.  All of that happens in one transaction while
holding the user's profile row lock, so two activations for the same user
cannot interleave.

Deliveries are deduplicated on ``(payment_id, event_type)``; an invoice
that is already ``Pago`` is never re-activated, which keeps a late
``PAYMENT_RECEIVED`` from shifting the expiration granted by
``PAYMENT_CONFIRMED``.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from babylon_core.licensing import InvoiceStatus, LicenseStatus, compute_expiration
from babylon_core.state.repository import (
    InvoiceRepository,
    LicenseRepository,
    ProcessedWebhookEventRepository,
    ProfileRepository,
)
from babylon_core.state.tables import InvoiceTable, LicenseTable
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from babylon_api.errors import AuthError
from babylon_api.services.settings_provider import GatewaySettings

logger = logging.getLogger(__name__)

WEBHOOK_TOKEN_HEADER = "asaas-access-token"

PAYMENT_EVENTS: frozenset[str] = frozenset({"PAYMENT_CONFIRMED", "PAYMENT_RECEIVED"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


class WebhookReconciler:
    """Authenticate and apply Asaas webhook deliveries.

    Parameters
    ----------
    session:
        Request-scoped database session.  The reconciler commits or rolls
        back its own unit of work.
    gateway:
        Gateway settings carrying the webhook shared secret.
    now:
        Clock used for ``confirmed_at`` and the expiration start.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewaySettings,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._now = now

    def authenticate(self, token: str | None) -> None:
        """Check the ``asaas-access-token`` header against the shared secret.

        Raises
        ------
        AuthError
            The token does not match, or no secret is configured while
            authentication is required.
        """
        expected = self._gateway.webhook_token.get_secret_value()
        if not expected:
            if self._gateway.webhook_auth_required:
                logger.error("Webhook rejected: no webhook token configured")
                raise AuthError("Unauthorized")
            logger.warning("Webhook accepted without authentication (no token configured)")
            return

        if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Webhook rejected: invalid access token")
            raise AuthError("Unauthorized")

    async def handle_notification(self, event_type: str | None, payment: dict[str, Any] | None) -> dict[str, Any]:
        """Apply one notification and return the response body.

        Unknown payments and irrelevant events are acknowledged without
        changes so the gateway stops redelivering them.
        """
        if not payment or not payment.get("id"):
            return {"success": True, "message": "No payment data"}

        payment_id = str(payment["id"])
        context = {"payment_id": payment_id, "event": event_type}
        if event_type not in PAYMENT_EVENTS:
            logger.debug("Ignoring webhook event %s for payment %s", event_type, payment_id, extra=context)
            return {"success": True, "message": "Event ignored"}

        events = ProcessedWebhookEventRepository(self._session)
        if await events.exists(payment_id, event_type):
            logger.info("Duplicate webhook %s for payment %s", event_type, payment_id, extra=context)
            return {"success": True, "message": "Event already processed"}

        invoices = InvoiceRepository(self._session)
        invoice = await invoices.get_by_payment_id(payment_id)
        if invoice is None:
            logger.info("No invoice for payment %s (%s); nothing to reconcile", payment_id, event_type, extra=context)
            return {"success": True, "message": "No matching invoice"}
        context["invoice_id"] = invoice.id

        # Serialise activations per user, then re-read the invoice under the lock.
        await ProfileRepository(self._session).get_by_id(invoice.user_id, for_update=True)
        await self._session.refresh(invoice)

        try:
            if invoice.status == InvoiceStatus.PAID.value:
                await events.record(payment_id, event_type)
                await self._session.commit()
                logger.info("Invoice %s already paid; recorded %s only", invoice.id, event_type, extra=context)
                return {"success": True, "message": "Invoice already paid"}

            license_row = await self._confirm(invoice, payment_id)
            await events.record(payment_id, event_type)
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            logger.info("Concurrent delivery already applied %s for payment %s", event_type, payment_id, extra=context)
            return {"success": True, "message": "Event already processed"}

        result: dict[str, Any] = {"success": True, "message": "Payment confirmed", "invoiceId": invoice.id}
        if license_row is not None:
            result["licenseId"] = license_row.id
        return result

    # -- Internals -----------------------------------------------------------

    async def _confirm(self, invoice: InvoiceTable, payment_id: str) -> LicenseTable | None:
        """Mark *invoice* paid and activate its license, if one matches."""
        context = {"payment_id": payment_id, "invoice_id": invoice.id}
        confirmed_at = self._now()
        await InvoiceRepository(self._session).mark_paid(invoice, confirmed_at)
        logger.info("Invoice %s paid (payment %s)", invoice.id, payment_id, extra=context)

        licenses = LicenseRepository(self._session)
        license_row = await licenses.get_by_payment_id(payment_id)
        if license_row is None and invoice.license_id:
            license_row = await licenses.get(invoice.license_id)
        if license_row is None:
            logger.warning("Payment %s confirmed but no license matches it", payment_id, extra=context)
            return None

        context.update(license_id=license_row.id, user_id=license_row.user_id)
        if license_row.status != LicenseStatus.ACTIVE.value:
            if license_row.status == LicenseStatus.EXPIRED.value:
                logger.info("Reactivating superseded license %s paid by %s", license_row.id, payment_id, extra=context)
            expiration = compute_expiration(license_row.type, confirmed_at)
            await licenses.activate(license_row, expiration)
            logger.info("License %s active until %s", license_row.id, expiration or "forever", extra=context)

        await licenses.expire_others(license_row.user_id, license_row.id)
        await ProfileRepository(self._session).set_active_license(license_row.user_id, license_row.id)
        return license_row
