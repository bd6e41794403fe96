"""Asaas payment endpoints: subscription creation, webhook receiver, payment polling.

All three endpoints answer errors with ``{"error": message}``.  Billing
errors keep their own status code; anything unexpected is logged, the
session is rolled back and the caller gets a 500.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from babylon_api.dependencies import AsaasClientDep, GatewaySettingsDep, SessionDep, SettingsDep
from babylon_api.errors import BillingError, ValidationError, error_response
from babylon_api.schemas import (
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from babylon_api.services.payment_verifier import PaymentVerifier
from babylon_api.services.subscription_service import SubscriptionService
from babylon_api.services.webhook_reconciler import WEBHOOK_TOKEN_HEADER, WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/asaas", tags=["asaas"])


def _unexpected(label: str, exc: Exception) -> JSONResponse:
    logger.exception("[%s] unexpected error: %s", label, exc)
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal error"})


@router.post("/create-subscription", response_model=CreateSubscriptionResponse)
async def create_subscription(
    body: CreateSubscriptionRequest,
    session: SessionDep,
    settings: SettingsDep,
    client: AsaasClientDep,
) -> Any:
    """Create a gateway subscription and the pending license and invoice."""
    service = SubscriptionService(session, client, settings)
    try:
        result = await service.create_subscription(body.plan_id, body.user_id, body.billing_type)
    except BillingError as exc:
        await session.rollback()
        logger.warning("create-subscription failed (%d): %s", exc.status_code, exc.message)
        return error_response(exc)
    except Exception as exc:
        await session.rollback()
        return _unexpected("create-subscription", exc)
    return result


@router.post("/asaas-webhook")
async def asaas_webhook(
    request: Request,
    session: SessionDep,
    gateway: GatewaySettingsDep,
) -> Any:
    """Receive payment notifications from Asaas.

    Authenticated by the ``asaas-access-token`` header before the body is
    parsed.  Irrelevant or unmatched notifications are acknowledged with
    200 so the gateway does not redeliver them.
    """
    reconciler = WebhookReconciler(session, gateway)
    try:
        reconciler.authenticate(request.headers.get(WEBHOOK_TOKEN_HEADER))

        try:
            payload = await request.json()
        except ValueError:
            raise ValidationError("Invalid JSON payload") from None
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")

        payment = payload.get("payment")
        return await reconciler.handle_notification(
            payload.get("event"),
            payment if isinstance(payment, dict) else None,
        )
    except BillingError as exc:
        await session.rollback()
        return error_response(exc)
    except Exception as exc:
        await session.rollback()
        return _unexpected("asaas-webhook", exc)


@router.post("/verify-payment", response_model=VerifyPaymentResponse)
async def verify_payment(
    body: VerifyPaymentRequest,
    client: AsaasClientDep,
) -> Any:
    """Report whether a gateway payment has been paid.  Read-only."""
    try:
        return await PaymentVerifier(client).verify_payment(body.payment_id)
    except BillingError as exc:
        logger.warning("verify-payment failed (%d): %s", exc.status_code, exc.message)
        return error_response(exc)
    except Exception as exc:
        return _unexpected("verify-payment", exc)
