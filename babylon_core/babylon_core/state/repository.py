"""Repository classes providing CRUD access to the Babylon Fin billing store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from babylon_core.licensing.lifecycle import (
    InvoiceStatus,
    LicenseStatus,
    transition_invoice,
    transition_license,
)
from babylon_core.state.tables import (
    APP_SETTINGS_ID,
    AppSettingsTable,
    InvoiceTable,
    LicensePlanTable,
    LicenseTable,
    ProcessedWebhookEventTable,
    ProfileTable,
)

logger = logging.getLogger(__name__)

# Sentinel distinguishing "leave unchanged" from an explicit ``None``.
_UNSET: Any = object()


# ---------------------------------------------------------------------------
# AppSettingsRepository
# ---------------------------------------------------------------------------


class AppSettingsRepository:
    """Read and write the singleton ``app_settings`` row."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self) -> AppSettingsTable | None:
        """Fetch the ``main`` settings row, or ``None`` if it was never saved."""
        stmt = select(AppSettingsTable).where(AppSettingsTable.id == APP_SETTINGS_ID)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        *,
        asaas_api_key: str | None = _UNSET,
        asaas_environment: str | None = _UNSET,
        asaas_webhook_token: str | None = _UNSET,
    ) -> AppSettingsTable:
        """Create or update the settings row.

        Parameters left at their default are not touched; passing ``None``
        explicitly clears the stored value so the process configuration
        applies again.
        """
        row = await self.get()
        if row is None:
            row = AppSettingsTable(id=APP_SETTINGS_ID)
            self._session.add(row)

        if asaas_api_key is not _UNSET:
            row.asaas_api_key = asaas_api_key
        if asaas_environment is not _UNSET:
            row.asaas_environment = asaas_environment
        if asaas_webhook_token is not _UNSET:
            row.asaas_webhook_token = asaas_webhook_token
        row.updated_at = datetime.now(UTC)

        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# ProfileRepository
# ---------------------------------------------------------------------------


class ProfileRepository:
    """CRUD operations for the ``profiles`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, user_id: str, *, for_update: bool = False) -> ProfileTable | None:
        """Fetch a profile by ID.

        Parameters
        ----------
        user_id:
            Profile identifier.
        for_update:
            When ``True`` the row is locked with ``SELECT ... FOR UPDATE``
            until the surrounding transaction ends.  Backends without row
            locks (SQLite) ignore the clause.
        """
        stmt = select(ProfileTable).where(ProfileTable.id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        name: str,
        email: str,
        cpf_cnpj: str | None = None,
        user_id: str | None = None,
        is_admin: bool = False,
    ) -> ProfileTable:
        """Insert a new profile."""
        row = ProfileTable(name=name, email=email, cpf_cnpj=cpf_cnpj, is_admin=is_admin)
        if user_id is not None:
            row.id = user_id
        self._session.add(row)
        await self._session.flush()
        return row

    async def set_customer_id(self, user_id: str, customer_id: str) -> None:
        """Store the gateway customer id for *user_id*."""
        await self._session.execute(
            update(ProfileTable).where(ProfileTable.id == user_id).values(asaas_customer_id=customer_id)
        )
        await self._session.flush()

    async def set_active_license(self, user_id: str, license_id: str | None) -> None:
        """Point the profile at its currently active license."""
        await self._session.execute(
            update(ProfileTable).where(ProfileTable.id == user_id).values(active_license_id=license_id)
        )
        await self._session.flush()


# ---------------------------------------------------------------------------
# LicensePlanRepository
# ---------------------------------------------------------------------------


class LicensePlanRepository:
    """CRUD operations for the ``license_plans`` catalog."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, plan_id: str) -> LicensePlanTable | None:
        """Fetch a single plan by ID."""
        stmt = select(LicensePlanTable).where(LicensePlanTable.id == plan_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[LicensePlanTable]:
        """Return every plan ordered by price, cheapest first."""
        stmt = select(LicensePlanTable).order_by(LicensePlanTable.price.asc(), LicensePlanTable.name.asc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        *,
        name: str,
        plan_type: str,
        price: Decimal,
        description: str | None = None,
        plan_id: str | None = None,
    ) -> LicensePlanTable:
        """Insert a new plan."""
        row = LicensePlanTable(name=name, type=plan_type, price=price, description=description)
        if plan_id is not None:
            row.id = plan_id
        self._session.add(row)
        await self._session.flush()
        return row

    async def update(self, plan_id: str, **fields: Any) -> LicensePlanTable | None:
        """Apply *fields* to an existing plan.

        Returns ``None`` when the plan does not exist.  Keys with a ``None``
        value are skipped.
        """
        row = await self.get(plan_id)
        if row is None:
            return None
        for key, value in fields.items():
            if value is None:
                continue
            setattr(row, "type" if key == "plan_type" else key, value)
        await self._session.flush()
        return row

    async def delete(self, plan_id: str) -> bool:
        """Delete a plan.  Returns ``True`` if a row was removed."""
        result = await self._session.execute(delete(LicensePlanTable).where(LicensePlanTable.id == plan_id))
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# LicenseRepository
# ---------------------------------------------------------------------------


class LicenseRepository:
    """CRUD operations for the ``licenses`` table.

    Status changes go through :func:`transition_license` so an illegal move
    raises :class:`InvalidTransitionError` before anything is written.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        user_id: str,
        plan_id: str | None,
        name: str,
        plan_type: str,
        value: Decimal,
        asaas_subscription_id: str | None,
        asaas_payment_id: str | None,
    ) -> LicenseTable:
        """Insert a new ``Pendente`` license."""
        row = LicenseTable(
            user_id=user_id,
            plan_id=plan_id,
            name=name,
            type=plan_type,
            value=value,
            status=LicenseStatus.PENDING.value,
            asaas_subscription_id=asaas_subscription_id,
            asaas_payment_id=asaas_payment_id,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, license_id: str) -> LicenseTable | None:
        """Fetch a single license by ID."""
        stmt = select(LicenseTable).where(LicenseTable.id == license_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_payment_id(self, payment_id: str) -> LicenseTable | None:
        """Fetch the license correlated with a gateway payment."""
        stmt = (
            select(LicenseTable)
            .where(LicenseTable.asaas_payment_id == payment_id)
            .order_by(LicenseTable.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[LicenseTable]:
        """Return a user's licenses, newest first."""
        stmt = (
            select(LicenseTable)
            .where(LicenseTable.user_id == user_id)
            .order_by(LicenseTable.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_others_for_user(self, user_id: str, exclude_license_id: str) -> list[LicenseTable]:
        """Return the user's non-expired licenses other than *exclude_license_id*."""
        stmt = select(LicenseTable).where(
            LicenseTable.user_id == user_id,
            LicenseTable.id != exclude_license_id,
            LicenseTable.status != LicenseStatus.EXPIRED.value,
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_all_with_profiles(self) -> list[tuple[LicenseTable, str | None, str | None]]:
        """Return every license with its owner's name and email, newest first."""
        stmt = (
            select(LicenseTable, ProfileTable.name, ProfileTable.email)
            .outerjoin(ProfileTable, ProfileTable.id == LicenseTable.user_id)
            .order_by(LicenseTable.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def activate(self, row: LicenseTable, expiration_date: date | None) -> LicenseTable:
        """Move *row* to ``Ativa`` with the given expiration after a confirmed payment.

        A license expired while still unpaid (superseded by another purchase)
        is reactivated.
        """
        row.status = transition_license(row.status, LicenseStatus.ACTIVE, paid=True).value
        row.expiration_date = expiration_date
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def expire_others(self, user_id: str, keep_license_id: str) -> int:
        """Expire every non-expired license of *user_id* except *keep_license_id*.

        Returns the number of licenses expired.
        """
        others = await self.list_others_for_user(user_id, keep_license_id)
        now = datetime.now(UTC)
        for other in others:
            other.status = transition_license(other.status, LicenseStatus.EXPIRED).value
            other.updated_at = now
        await self._session.flush()
        if others:
            logger.info("Expired %d superseded license(s) for user=%s", len(others), user_id)
        return len(others)


# ---------------------------------------------------------------------------
# InvoiceRepository
# ---------------------------------------------------------------------------


class InvoiceRepository:
    """CRUD operations for the ``invoices`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        user_id: str,
        license_id: str | None,
        amount: Decimal,
        asaas_payment_id: str,
        invoice_url: str | None,
        description: str | None,
    ) -> InvoiceTable:
        """Insert a new ``Pendente`` invoice."""
        row = InvoiceTable(
            user_id=user_id,
            license_id=license_id,
            amount=amount,
            status=InvoiceStatus.PENDING.value,
            asaas_payment_id=asaas_payment_id,
            invoice_url=invoice_url,
            description=description,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_payment_id(self, payment_id: str) -> InvoiceTable | None:
        """Fetch the invoice for a gateway payment."""
        stmt = select(InvoiceTable).where(InvoiceTable.asaas_payment_id == payment_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[InvoiceTable]:
        """Return a user's invoices, newest first."""
        stmt = (
            select(InvoiceTable)
            .where(InvoiceTable.user_id == user_id)
            .order_by(InvoiceTable.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_paid(self, row: InvoiceTable, confirmed_at: datetime) -> InvoiceTable:
        """Move *row* to ``Pago``."""
        row.status = transition_invoice(row.status, InvoiceStatus.PAID).value
        row.confirmed_at = confirmed_at
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# ProcessedWebhookEventRepository
# ---------------------------------------------------------------------------


class ProcessedWebhookEventRepository:
    """Dedupe ledger of applied gateway notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def exists(self, payment_id: str, event_type: str) -> bool:
        """Return ``True`` if ``(payment_id, event_type)`` was already applied."""
        stmt = select(ProcessedWebhookEventTable.id).where(
            ProcessedWebhookEventTable.payment_id == payment_id,
            ProcessedWebhookEventTable.event_type == event_type,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def record(self, payment_id: str, event_type: str) -> ProcessedWebhookEventTable:
        """Record ``(payment_id, event_type)`` as applied.

        Raises
        ------
        sqlalchemy.exc.IntegrityError
            If a concurrent delivery already recorded the same pair.  The
            caller must roll back its transaction.
        """
        row = ProcessedWebhookEventTable(payment_id=payment_id, event_type=event_type)
        self._session.add(row)
        await self._session.flush()
        return row
