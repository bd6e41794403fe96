"""SQLAlchemy 2.0 ORM table definitions for the Babylon Fin billing store.

All tables use the modern ``Mapped`` / ``mapped_column`` declaration style.
Status columns hold the string values of the enums in
:mod:`babylon_core.licensing.lifecycle`; check constraints keep the store
from accepting anything else.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

APP_SETTINGS_ID = "main"


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all billing tables."""


# ---------------------------------------------------------------------------
# Application settings
# ---------------------------------------------------------------------------


class AppSettingsTable(Base):
    """Runtime-editable gateway credentials.

    A single row with ``id='main'`` is expected.  Values left empty fall
    back to process configuration, so the gateway can be reconfigured
    without a redeploy.
    """

    __tablename__ = "app_settings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=APP_SETTINGS_ID)
    asaas_api_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    asaas_environment: Mapped[str | None] = mapped_column(String(16), nullable=True)
    asaas_webhook_token: Mapped[str | None] = mapped_column(String(512), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "asaas_environment IS NULL OR asaas_environment IN ('sandbox','production')",
            name="ck_app_settings_environment",
        ),
    )


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProfileTable(Base):
    """User identity record with its gateway customer mapping.

    ``asaas_customer_id`` is created lazily on the first subscription.
    ``active_license_id`` is written only when a payment is confirmed.
    """

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    cpf_cnpj: Mapped[str | None] = mapped_column(String(32), nullable=True)
    asaas_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    active_license_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_profiles_email", "email"),
        Index("ix_profiles_asaas_customer", "asaas_customer_id"),
    )


# ---------------------------------------------------------------------------
# Plan catalog
# ---------------------------------------------------------------------------


class LicensePlanTable(Base):
    """Catalog entry a user can subscribe to."""

    __tablename__ = "license_plans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("type IN ('Mensal','Anual','Vitalícia')", name="ck_license_plans_type"),
        CheckConstraint("price >= 0", name="ck_license_plans_price"),
    )


# ---------------------------------------------------------------------------
# Licenses
# ---------------------------------------------------------------------------


class LicenseTable(Base):
    """One user's entitlement period, correlated to a gateway payment.

    At most one license per user may be ``Ativa``; the webhook reconciler
    enforces this by expiring every other license of the user while
    holding the user's profile row lock.
    """

    __tablename__ = "licenses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    plan_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("license_plans.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pendente")
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    asaas_subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    asaas_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("status IN ('Pendente','Ativa','Expirada')", name="ck_licenses_status"),
        Index("ix_licenses_user_status", "user_id", "status"),
        Index("ix_licenses_asaas_payment", "asaas_payment_id"),
    )


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


class InvoiceTable(Base):
    """Local projection of exactly one gateway payment."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    license_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("licenses.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pendente")
    asaas_payment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('Pendente','Pago')", name="ck_invoices_status"),
        UniqueConstraint("asaas_payment_id", name="uq_invoices_asaas_payment"),
        Index("ix_invoices_user_created", "user_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# Webhook dedupe ledger
# ---------------------------------------------------------------------------


class ProcessedWebhookEventTable(Base):
    """Gateway notifications that have already been applied.

    Keyed by ``(payment_id, event_type)`` so a redelivered notification is
    recognised and skipped before any state is touched.
    """

    __tablename__ = "processed_webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("payment_id", "event_type", name="uq_processed_webhook_events"),)
