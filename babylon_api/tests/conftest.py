"""Shared fixtures for Babylon Fin API tests.

Provides an on-disk SQLite database per test, a scripted fake of the Asaas
REST API served through ``httpx.MockTransport``, and a FastAPI app wired to
both through dependency overrides.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator
from decimal import Decimal
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio
from babylon_core.state.repository import LicensePlanRepository, ProfileRepository
from babylon_core.state.sqlite_adapter import create_local_tables, get_local_engine
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from babylon_api.config import APISettings
from babylon_api.dependencies import get_asaas_client, get_db_session, get_settings
from babylon_api.main import create_app
from babylon_api.services.asaas_client import AsaasClient

WEBHOOK_TOKEN = "whk-test-token"
ADMIN_TOKEN = "admin-test-token"

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings(tmp_path: Path) -> APISettings:
    """Return a settings object suitable for testing."""
    return APISettings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        platform_env="dev",
        cors_origins=["http://localhost:5173"],
        asaas_api_key="test-api-key",
        asaas_environment="sandbox",
        asaas_webhook_token=WEBHOOK_TOKEN,
        admin_token=ADMIN_TOKEN,
        first_payment_max_retries=2,
        first_payment_base_delay=0.01,
        first_payment_max_delay=0.02,
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    db_engine = get_local_engine(tmp_path / "billing.db")
    await create_local_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture()
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, str]:
    """Insert a subscribable user, a user without CPF and three plans."""
    async with session_factory() as s:
        profiles = ProfileRepository(s)
        await profiles.create(user_id="user-1", name="Ana Souza", email="ana@example.com", cpf_cnpj="123.456.789-09")
        await profiles.create(user_id="user-nocpf", name="Bruno", email="bruno@example.com", cpf_cnpj=None)
        plans = LicensePlanRepository(s)
        await plans.create(plan_id="plan-monthly", name="Pro Mensal", plan_type="Mensal", price=Decimal("49.90"))
        await plans.create(plan_id="plan-yearly", name="Pro Anual", plan_type="Anual", price=Decimal("399.00"))
        await plans.create(plan_id="plan-lifetime", name="Vitalício", plan_type="Vitalícia", price=Decimal("999.00"))
        await s.commit()
    return {
        "user": "user-1",
        "user_nocpf": "user-nocpf",
        "monthly": "plan-monthly",
        "yearly": "plan-yearly",
        "lifetime": "plan-lifetime",
    }


# ---------------------------------------------------------------------------
# Fake Asaas gateway
# ---------------------------------------------------------------------------


class FakeAsaas:
    """Scripted stand-in for the Asaas REST API.

    Records every request and generates ids sequentially.  A subscription's
    first charge becomes visible after ``payments_visible_after`` list calls.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.payments_visible_after = 0
        self.payment_status = "PENDING"
        self.payment_billing_type = "PIX"
        self.fail: dict[str, tuple[int, dict[str, Any]]] = {}
        self._counter = 0
        self._list_calls: dict[str, int] = {}

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter:04d}"

    def calls(self, method: str, path_suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(path_suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        key = f"{request.method} {path.rsplit('/v3', 1)[-1]}"
        for prefix, (status, body) in self.fail.items():
            if key.startswith(prefix):
                return httpx.Response(status, json=body)

        if request.method == "POST" and path.endswith("/customers"):
            return httpx.Response(200, json={"id": self._next("cus"), **json.loads(request.content)})
        if request.method == "POST" and path.endswith("/subscriptions"):
            return httpx.Response(200, json={"id": self._next("sub"), **json.loads(request.content)})
        if request.method == "GET" and path.endswith("/payments") and "/subscriptions/" in path:
            sub_id = path.split("/subscriptions/")[1].split("/")[0]
            calls = self._list_calls.get(sub_id, 0)
            self._list_calls[sub_id] = calls + 1
            if calls < self.payments_visible_after:
                return httpx.Response(200, json={"data": [], "totalCount": 0})
            payment = {
                "id": f"pay_{sub_id}",
                "status": "PENDING",
                "billingType": self.payment_billing_type,
                "invoiceUrl": f"https://sandbox.asaas.com/i/{sub_id}",
                "bankSlipUrl": None,
            }
            return httpx.Response(200, json={"data": [payment], "totalCount": 1})
        if request.method == "GET" and path.endswith("/pixQrCode"):
            return httpx.Response(200, json={"encodedImage": "aW1hZ2U=", "payload": "00020126-pix", "success": True})
        if request.method == "GET" and "/payments/" in path:
            payment_id = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"id": payment_id, "status": self.payment_status, "value": 49.9})
        return httpx.Response(404, json={"errors": [{"code": "not_found", "description": "Not found"}]})


@pytest.fixture()
def fake_asaas() -> FakeAsaas:
    return FakeAsaas()


@pytest_asyncio.fixture()
async def asaas_client(fake_asaas: FakeAsaas) -> AsyncGenerator[AsaasClient, None]:
    client = AsaasClient("test-api-key", "sandbox", transport=httpx.MockTransport(fake_asaas.handler))
    yield client
    await client.close()


# ---------------------------------------------------------------------------
# FastAPI app (async httpx)
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(
    test_settings: APISettings,
    session_factory: async_sessionmaker[AsyncSession],
    asaas_client: AsaasClient,
):
    """Create a FastAPI app bound to the test database and fake gateway."""
    application = create_app()

    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        s = session_factory()
        try:
            yield s
            await s.commit()
        except Exception:
            await s.rollback()
            raise
        finally:
            await s.close()

    async def _override_client() -> AsyncGenerator[AsaasClient, None]:
        yield asaas_client

    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_db_session] = _override_session
    application.dependency_overrides[get_asaas_client] = _override_client
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture()
def webhook_headers() -> dict[str, str]:
    return {"asaas-access-token": WEBHOOK_TOKEN}
