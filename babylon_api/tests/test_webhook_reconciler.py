"""Tests for WebhookReconciler: authentication, dedupe and activation."""

from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from babylon_core.state.repository import (
    InvoiceRepository,
    LicenseRepository,
    ProcessedWebhookEventRepository,
    ProfileRepository,
)
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession

from babylon_api.config import AsaasEnvironment
from babylon_api.errors import AuthError
from babylon_api.services.settings_provider import GatewaySettings
from babylon_api.services.webhook_reconciler import WebhookReconciler

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _gateway(token: str = "tok", *, required: bool = True) -> GatewaySettings:
    return GatewaySettings(
        api_key=SecretStr("key"),
        environment=AsaasEnvironment.SANDBOX,
        webhook_token=SecretStr(token),
        webhook_auth_required=required,
    )


class _Clock:
    """Settable clock for confirmation timestamps."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


async def _pending_purchase(session: AsyncSession, user_id: str, payment_id: str, plan_type: str = "Mensal") -> str:
    license_row = await LicenseRepository(session).create(
        user_id=user_id,
        plan_id=None,
        name=f"Plano {plan_type}",
        plan_type=plan_type,
        value=Decimal("49.90"),
        asaas_subscription_id=f"sub_{payment_id}",
        asaas_payment_id=payment_id,
    )
    await InvoiceRepository(session).create(
        user_id=user_id,
        license_id=license_row.id,
        amount=Decimal("49.90"),
        asaas_payment_id=payment_id,
        invoice_url=None,
        description=f"Fatura Plano {plan_type}",
    )
    await session.commit()
    return license_row.id


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuthenticate:
    """Verify the shared-secret check."""

    def test_matching_token(self) -> None:
        WebhookReconciler(AsyncMock(), _gateway("tok")).authenticate("tok")

    @pytest.mark.parametrize("token", ["wrong", "", None, "tok "])
    def test_mismatch_raises(self, token) -> None:
        with pytest.raises(AuthError) as exc_info:
            WebhookReconciler(AsyncMock(), _gateway("tok")).authenticate(token)
        assert exc_info.value.status_code == 401

    def test_unconfigured_secret_fails_closed(self) -> None:
        with pytest.raises(AuthError):
            WebhookReconciler(AsyncMock(), _gateway("")).authenticate("anything")

    def test_unconfigured_secret_allowed_when_not_required(self) -> None:
        WebhookReconciler(AsyncMock(), _gateway("", required=False)).authenticate(None)


# ---------------------------------------------------------------------------
# Notification handling
# ---------------------------------------------------------------------------


class TestHandleNotification:
    """Verify reconciliation of payment notifications."""

    @pytest.mark.asyncio
    async def test_no_payment_data(self, session) -> None:
        result = await WebhookReconciler(session, _gateway()).handle_notification("PAYMENT_CONFIRMED", None)
        assert result == {"success": True, "message": "No payment data"}

    @pytest.mark.asyncio
    async def test_irrelevant_event_is_ignored(self, session, seeded) -> None:
        license_id = await _pending_purchase(session, seeded["user"], "pay_1")
        result = await WebhookReconciler(session, _gateway()).handle_notification(
            "PAYMENT_CREATED", {"id": "pay_1"}
        )
        assert result["message"] == "Event ignored"
        license_row = await LicenseRepository(session).get(license_id)
        assert license_row is not None
        assert license_row.status == "Pendente"

    @pytest.mark.asyncio
    async def test_unknown_payment_is_acknowledged(self, session, seeded) -> None:
        result = await WebhookReconciler(session, _gateway()).handle_notification(
            "PAYMENT_CONFIRMED", {"id": "pay_unknown"}
        )
        assert result == {"success": True, "message": "No matching invoice"}
        assert not await ProcessedWebhookEventRepository(session).exists("pay_unknown", "PAYMENT_CONFIRMED")

    @pytest.mark.asyncio
    async def test_confirmation_activates_license(self, session, seeded) -> None:
        license_id = await _pending_purchase(session, seeded["user"], "pay_1")
        clock = _Clock(datetime(2025, 1, 31, 15, 0, tzinfo=UTC))

        result = await WebhookReconciler(session, _gateway(), now=clock).handle_notification(
            "PAYMENT_CONFIRMED", {"id": "pay_1", "status": "CONFIRMED"}
        )

        assert result["message"] == "Payment confirmed"
        assert result["licenseId"] == license_id

        invoice = await InvoiceRepository(session).get_by_payment_id("pay_1")
        assert invoice is not None
        assert invoice.status == "Pago"
        assert invoice.confirmed_at is not None

        license_row = await LicenseRepository(session).get(license_id)
        assert license_row is not None
        assert license_row.status == "Ativa"
        assert license_row.expiration_date == date(2025, 2, 28)

        profile = await ProfileRepository(session).get_by_id(seeded["user"])
        assert profile is not None
        assert profile.active_license_id == license_id
        assert await ProcessedWebhookEventRepository(session).exists("pay_1", "PAYMENT_CONFIRMED")

    @pytest.mark.asyncio
    async def test_yearly_and_lifetime_expiration(self, session, seeded) -> None:
        yearly_id = await _pending_purchase(session, seeded["user"], "pay_y", "Anual")
        clock = _Clock(datetime(2025, 3, 1, tzinfo=UTC))
        reconciler = WebhookReconciler(session, _gateway(), now=clock)

        await reconciler.handle_notification("PAYMENT_CONFIRMED", {"id": "pay_y"})
        yearly = await LicenseRepository(session).get(yearly_id)
        assert yearly is not None
        assert yearly.expiration_date == date(2026, 3, 1)

        lifetime_id = await _pending_purchase(session, seeded["user"], "pay_l", "Vitalícia")
        await reconciler.handle_notification("PAYMENT_CONFIRMED", {"id": "pay_l"})
        lifetime = await LicenseRepository(session).get(lifetime_id)
        assert lifetime is not None
        assert lifetime.status == "Ativa"
        assert lifetime.expiration_date is None

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, session, seeded) -> None:
        license_id = await _pending_purchase(session, seeded["user"], "pay_1")
        clock = _Clock(datetime(2025, 5, 10, tzinfo=UTC))
        reconciler = WebhookReconciler(session, _gateway(), now=clock)

        await reconciler.handle_notification("PAYMENT_CONFIRMED", {"id": "pay_1"})
        clock.now = datetime(2025, 5, 20, tzinfo=UTC)
        result = await reconciler.handle_notification("PAYMENT_CONFIRMED", {"id": "pay_1"})

        assert result["message"] == "Event already processed"
        license_row = await LicenseRepository(session).get(license_id)
        assert license_row is not None
        assert license_row.expiration_date == date(2025, 6, 10)

    @pytest.mark.asyncio
    async def test_received_after_confirmed_keeps_expiration(self, session, seeded) -> None:
        license_id = await _pending_purchase(session, seeded["user"], "pay_1")
        clock = _Clock(datetime(2025, 5, 10, tzinfo=UTC))
        reconciler = WebhookReconciler(session, _gateway(), now=clock)

        await reconciler.handle_notification("PAYMENT_CONFIRMED", {"id": "pay_1"})
        clock.now = datetime(2025, 5, 12, tzinfo=UTC)
        result = await reconciler.handle_notification("PAYMENT_RECEIVED", {"id": "pay_1"})

        assert result["message"] == "Invoice already paid"
        license_row = await LicenseRepository(session).get(license_id)
        assert license_row is not None
        assert license_row.expiration_date == date(2025, 6, 10)
        assert await ProcessedWebhookEventRepository(session).exists("pay_1", "PAYMENT_RECEIVED")

    @pytest.mark.asyncio
    async def test_new_activation_expires_previous_license(self, session, seeded) -> None:
        first_id = await _pending_purchase(session, seeded["user"], "pay_1")
        second_id = await _pending_purchase(session, seeded["user"], "pay_2", "Anual")
        reconciler = WebhookReconciler(session, _gateway())

        await reconciler.handle_notification("PAYMENT_CONFIRMED", {"id": "pay_1"})
        await reconciler.handle_notification("PAYMENT_CONFIRMED", {"id": "pay_2"})

        licenses = await LicenseRepository(session).list_for_user(seeded["user"])
        statuses = {row.id: row.status for row in licenses}
        assert statuses == {first_id: "Expirada", second_id: "Ativa"}

        profile = await ProfileRepository(session).get_by_id(seeded["user"])
        assert profile is not None
        assert profile.active_license_id == second_id


    @pytest.mark.asyncio
    async def test_late_payment_reactivates_superseded_license(self, session, seeded) -> None:
        old_id = await _pending_purchase(session, seeded["user"], "pay_old")
        new_id = await _pending_purchase(session, seeded["user"], "pay_new", "Anual")
        clock = _Clock(datetime(2025, 4, 15, tzinfo=UTC))
        reconciler = WebhookReconciler(session, _gateway(), now=clock)

        await reconciler.handle_notification("PAYMENT_CONFIRMED", {"id": "pay_new"})
        result = await reconciler.handle_notification("PAYMENT_CONFIRMED", {"id": "pay_old"})

        assert result["licenseId"] == old_id
        old = await LicenseRepository(session).get(old_id)
        new = await LicenseRepository(session).get(new_id)
        assert old is not None and new is not None
        assert old.status == "Ativa"
        assert old.expiration_date == date(2025, 5, 15)
        assert new.status == "Expirada"
        profile = await ProfileRepository(session).get_by_id(seeded["user"])
        assert profile is not None
        assert profile.active_license_id == old_id


# ---------------------------------------------------------------------------
# Concurrent deliveries
# ---------------------------------------------------------------------------


class TestConcurrentDeliveries:
    """Verify deliveries handled on separate sessions at the same time."""

    @staticmethod
    async def _deliver(session_factory, payment_id: str) -> dict:
        async with session_factory() as s:
            return await WebhookReconciler(s, _gateway()).handle_notification(
                "PAYMENT_CONFIRMED", {"id": payment_id}
            )

    @pytest.mark.asyncio
    async def test_two_payments_leave_one_active_license(self, session, session_factory, seeded) -> None:
        await _pending_purchase(session, seeded["user"], "pay_a")
        await _pending_purchase(session, seeded["user"], "pay_b", "Anual")

        results = await asyncio.gather(
            self._deliver(session_factory, "pay_a"),
            self._deliver(session_factory, "pay_b"),
        )
        assert [r["message"] for r in results] == ["Payment confirmed", "Payment confirmed"]

        async with session_factory() as fresh:
            licenses = await LicenseRepository(fresh).list_for_user(seeded["user"])
            active = [row for row in licenses if row.status == "Ativa"]
            assert len(active) == 1
            profile = await ProfileRepository(fresh).get_by_id(seeded["user"])
            assert profile is not None
            assert profile.active_license_id == active[0].id
            for payment_id in ("pay_a", "pay_b"):
                invoice = await InvoiceRepository(fresh).get_by_payment_id(payment_id)
                assert invoice is not None
                assert invoice.status == "Pago"

    @pytest.mark.asyncio
    async def test_duplicate_delivery_applies_once(self, session, session_factory, seeded) -> None:
        license_id = await _pending_purchase(session, seeded["user"], "pay_a")

        results = await asyncio.gather(
            self._deliver(session_factory, "pay_a"),
            self._deliver(session_factory, "pay_a"),
        )
        messages = sorted(r["message"] for r in results)
        assert messages == ["Event already processed", "Payment confirmed"]

        async with session_factory() as fresh:
            license_row = await LicenseRepository(fresh).get(license_id)
            assert license_row is not None
            assert license_row.status == "Ativa"
