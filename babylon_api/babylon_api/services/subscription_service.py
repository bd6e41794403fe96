"""Subscription orchestration: gateway customer, subscription and first invoice.

Creating a subscription touches three systems in order: the local profile
(customer id), the payment gateway (customer, subscription, first charge)
and the local license/invoice tables.  Gateway resources created before a
later step fails are not compensated; the customer id is committed as soon
as it exists so a retry reuses it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, timedelta
from enum import Enum
from typing import Any

from babylon_core.licensing import billing_cycle_for
from babylon_core.retry import RetryConfig, async_retry_with_backoff
from babylon_core.state.repository import (
    InvoiceRepository,
    LicensePlanRepository,
    LicenseRepository,
    ProfileRepository,
)
from babylon_core.state.tables import ProfileTable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from babylon_api.config import APISettings
from babylon_api.errors import (
    GatewayError,
    NotFoundError,
    PreconditionError,
    RetryableError,
    ValidationError,
)
from babylon_api.services.asaas_client import AsaasClient

logger = logging.getLogger(__name__)


class BillingType(str, Enum):
    """Payment method requested for a subscription."""

    UNDEFINED = "UNDEFINED"
    PIX = "PIX"
    BOLETO = "BOLETO"
    CREDIT_CARD = "CREDIT_CARD"


class _FirstPaymentPending(Exception):
    """The gateway has not generated the subscription's first charge yet."""


def _parse_billing_type(value: str | None) -> BillingType:
    if not value:
        return BillingType.UNDEFINED
    try:
        return BillingType(value.upper())
    except ValueError:
        raise ValidationError(f"billingType inválido: {value}") from None


class SubscriptionService:
    """Create a gateway subscription for a user and a catalog plan.

    Parameters
    ----------
    session:
        Request-scoped database session.
    client:
        Gateway client built from the request's gateway settings.
    settings:
        Application settings (first-invoice discovery backoff).
    today:
        Clock returning the current date; injectable for tests.
    """

    def __init__(
        self,
        session: AsyncSession,
        client: AsaasClient,
        settings: APISettings,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._session = session
        self._client = client
        self._settings = settings
        self._today = today

    async def create_subscription(
        self,
        plan_id: str | None,
        user_id: str | None,
        billing_type: str | None = BillingType.UNDEFINED.value,
    ) -> dict[str, Any]:
        """Subscribe *user_id* to *plan_id* and record the pending license.

        Returns
        -------
        dict
            ``{success, subscriptionId, paymentId, invoiceUrl, pixData?}``.

        Raises
        ------
        ValidationError
            Missing identifiers or an unknown billing type.
        NotFoundError
            The user or the plan does not exist.
        PreconditionError
            The user has no CPF/CNPJ on file; no gateway call is made.
        GatewayError
            The gateway rejected a call.
        RetryableError
            The subscription exists but its first charge was not generated
            within the discovery window.
        """
        if not plan_id or not user_id:
            raise ValidationError("planId e userId são obrigatórios.")
        requested = _parse_billing_type(billing_type)

        profiles = ProfileRepository(self._session)
        profile = await profiles.get_by_id(user_id)
        plan = await LicensePlanRepository(self._session).get(plan_id)
        if profile is None or plan is None:
            raise NotFoundError("Usuário ou Plano não encontrado no banco.")
        if not (profile.cpf_cnpj or "").strip():
            raise PreconditionError("Você precisa preencher seu CPF/CNPJ no perfil antes de assinar.")

        customer_id = await self._ensure_customer(profile)

        gateway_billing_type = BillingType.PIX if requested is BillingType.UNDEFINED else requested
        subscription = await self._client.create_subscription(
            customer_id=customer_id,
            billing_type=gateway_billing_type.value,
            value=float(plan.price),
            next_due_date=self._today() + timedelta(days=1),
            cycle=billing_cycle_for(plan.type).value,
            description=f"Assinatura {plan.name} - Babylon Fin",
            external_reference=plan.id,
        )
        subscription_id = subscription.get("id")
        if not subscription_id:
            raise GatewayError("Erro ao gerar assinatura no Asaas")
        logger.info(
            "Created subscription %s for user=%s plan=%s",
            subscription_id,
            user_id,
            plan_id,
            extra={"subscription_id": subscription_id, "user_id": user_id, "plan_id": plan_id},
        )

        payment = await self._discover_first_payment(subscription_id)
        payment_id = str(payment["id"])
        invoice_url = payment.get("invoiceUrl") or payment.get("bankSlipUrl")

        try:
            license_row = await LicenseRepository(self._session).create(
                user_id=user_id,
                plan_id=plan.id,
                name=plan.name,
                plan_type=plan.type,
                value=plan.price,
                asaas_subscription_id=subscription_id,
                asaas_payment_id=payment_id,
            )
            await InvoiceRepository(self._session).create(
                user_id=user_id,
                license_id=license_row.id,
                amount=plan.price,
                asaas_payment_id=payment_id,
                invoice_url=invoice_url,
                description=f"Fatura {plan.name}",
            )
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.error(
                "Subscription %s (payment %s) exists on the gateway but local records failed",
                subscription_id,
                payment_id,
                exc_info=True,
                extra={"subscription_id": subscription_id, "payment_id": payment_id, "user_id": user_id},
            )
            raise

        result: dict[str, Any] = {
            "success": True,
            "subscriptionId": subscription_id,
            "paymentId": payment_id,
            "invoiceUrl": invoice_url,
        }
        if gateway_billing_type is BillingType.PIX or payment.get("billingType") == BillingType.PIX.value:
            pix_data = await self._fetch_pix(payment_id)
            if pix_data is not None:
                result["pixData"] = pix_data
        return result

    # -- Internals -----------------------------------------------------------

    async def _ensure_customer(self, profile: ProfileTable) -> str:
        """Return the profile's gateway customer id, creating it if needed."""
        if profile.asaas_customer_id:
            return profile.asaas_customer_id

        customer = await self._client.create_customer(
            name=profile.name,
            email=profile.email,
            cpf_cnpj=profile.cpf_cnpj or "",
            external_reference=profile.id,
        )
        customer_id = customer.get("id")
        if not customer_id:
            raise GatewayError("Erro ao criar cliente no Asaas")

        await ProfileRepository(self._session).set_customer_id(profile.id, customer_id)
        await self._session.commit()
        profile.asaas_customer_id = customer_id
        logger.info("Created gateway customer %s for user=%s", customer_id, profile.id, extra={"user_id": profile.id})
        return customer_id

    async def _discover_first_payment(self, subscription_id: str) -> dict[str, Any]:
        """Poll the subscription's charges until the first one appears."""

        async def _first() -> dict[str, Any]:
            payments = await self._client.list_subscription_payments(subscription_id)
            if not payments or not payments[0].get("id"):
                raise _FirstPaymentPending(subscription_id)
            return payments[0]

        config = RetryConfig(
            max_retries=self._settings.first_payment_max_retries,
            base_delay=self._settings.first_payment_base_delay,
            max_delay=self._settings.first_payment_max_delay,
        )
        try:
            return await async_retry_with_backoff(
                _first,
                config,
                retryable_exceptions=(_FirstPaymentPending,),
                label=f"first charge of subscription {subscription_id}",
            )
        except _FirstPaymentPending:
            raise RetryableError(
                "Assinatura criada, mas a primeira fatura ainda não foi gerada pelo gateway. "
                "Tente novamente em instantes."
            ) from None

    async def _fetch_pix(self, payment_id: str) -> dict[str, str] | None:
        """Fetch the PIX QR code; failures are logged and yield ``None``."""
        try:
            qr = await self._client.get_pix_qr_code(payment_id)
        except GatewayError as exc:
            logger.warning("PIX QR code unavailable for payment %s: %s", payment_id, exc.message)
            return None
        return {"qrCode": qr.get("encodedImage", ""), "copyPaste": qr.get("payload", "")}
