"""Shared Pydantic request/response models for API endpoints.

The web client speaks camelCase JSON, so every model uses a camelCase alias
generator while keeping snake_case attribute names in Python.  Responses are
serialised by alias (FastAPI's default for ``response_model``).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from babylon_core.licensing import PlanType
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting both camelCase and snake_case field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Asaas payment flow
# ---------------------------------------------------------------------------


class CreateSubscriptionRequest(CamelModel):
    """Request body for ``POST /asaas/create-subscription``.

    Identifiers are optional at the schema level so that a missing value is
    reported with the billing error envelope rather than a 422.  An omitted
    or null ``billingType`` means ``UNDEFINED``.
    """

    plan_id: str | None = None
    user_id: str | None = None
    billing_type: str | None = None


class PixData(CamelModel):
    """PIX QR code for an open charge."""

    qr_code: str
    copy_paste: str


class CreateSubscriptionResponse(CamelModel):
    """Response for ``POST /asaas/create-subscription``."""

    success: bool = True
    subscription_id: str
    payment_id: str
    invoice_url: str | None = None
    pix_data: PixData | None = None


class VerifyPaymentRequest(CamelModel):
    """Request body for ``POST /asaas/verify-payment``."""

    payment_id: str | None = None


class VerifyPaymentResponse(CamelModel):
    """Response for ``POST /asaas/verify-payment``."""

    success: bool
    status: str | None = None
    payment: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Plan catalog
# ---------------------------------------------------------------------------


class PlanCreate(CamelModel):
    """Request body for ``POST /plans``."""

    name: str = Field(..., min_length=1, max_length=256)
    type: PlanType
    price: float = Field(..., ge=0)
    description: str | None = None


class PlanUpdate(CamelModel):
    """Request body for ``PUT /plans/{plan_id}``; omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=256)
    type: PlanType | None = None
    price: float | None = Field(default=None, ge=0)
    description: str | None = None


class PlanResponse(CamelModel):
    """A catalog plan."""

    id: str
    name: str
    type: str
    price: float
    description: str | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Licenses and invoices
# ---------------------------------------------------------------------------


class LicenseResponse(CamelModel):
    """A user license."""

    id: str
    user_id: str
    plan_id: str | None = None
    name: str
    type: str
    value: float
    status: str
    expiration_date: date | None = None
    asaas_subscription_id: str | None = None
    asaas_payment_id: str | None = None
    created_at: datetime | None = None


class AdminLicenseResponse(LicenseResponse):
    """A license with its owner's name and email, for the admin overview."""

    user_name: str | None = None
    user_email: str | None = None


class InvoiceResponse(CamelModel):
    """A user invoice."""

    id: str
    user_id: str
    license_id: str | None = None
    amount: float
    status: str
    asaas_payment_id: str
    invoice_url: str | None = None
    description: str | None = None
    confirmed_at: datetime | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Gateway settings
# ---------------------------------------------------------------------------


class GatewaySettingsResponse(CamelModel):
    """Effective gateway configuration with secrets masked."""

    asaas_api_key: str
    asaas_environment: str
    asaas_webhook_token: str
    api_key_configured: bool
    webhook_token_configured: bool


class GatewaySettingsUpdate(CamelModel):
    """Request body for ``PUT /settings``.

    An omitted field is left unchanged; an empty string clears the stored
    value so the environment fallback applies again.
    """

    asaas_api_key: str | None = None
    asaas_environment: str | None = Field(default=None, pattern="^(sandbox|production)?$")
    asaas_webhook_token: str | None = None
