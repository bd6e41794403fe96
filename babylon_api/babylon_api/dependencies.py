"""FastAPI dependency injection for settings, database sessions and the gateway client."""

from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from babylon_core.state.database import create_session_factory, get_engine
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from babylon_api.config import APISettings, load_api_settings
from babylon_api.errors import AuthError, ForbiddenError
from babylon_api.services.asaas_client import AsaasClient
from babylon_api.services.settings_provider import GatewaySettings, SettingsProvider

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = create_session_factory(_engine)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory."""
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` for one request.

    The session commits on clean exit and rolls back on exception.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Gateway settings and client
# ---------------------------------------------------------------------------


async def get_gateway_settings(session: SessionDep, settings: SettingsDep) -> GatewaySettings:
    """Resolve the gateway configuration for this request."""
    return await SettingsProvider(session, settings).load()


GatewaySettingsDep = Annotated[GatewaySettings, Depends(get_gateway_settings)]


async def get_asaas_client(gateway: GatewaySettingsDep) -> AsyncGenerator[AsaasClient, None]:
    """Yield an :class:`AsaasClient` for this request and close it afterwards."""
    client = AsaasClient(
        api_key=gateway.api_key.get_secret_value(),
        environment=gateway.environment,
        timeout=gateway.timeout,
    )
    try:
        yield client
    finally:
        await client.close()


AsaasClientDep = Annotated[AsaasClient, Depends(get_asaas_client)]

# ---------------------------------------------------------------------------
# Admin guard
# ---------------------------------------------------------------------------

ADMIN_TOKEN_HEADER = "X-Admin-Token"


def require_admin(
    settings: SettingsDep,
    x_admin_token: Annotated[str | None, Header(alias=ADMIN_TOKEN_HEADER)] = None,
) -> None:
    """Reject the request unless it carries the configured admin token.

    Raises
    ------
    ForbiddenError
        No admin token is configured, so admin endpoints are disabled.
    AuthError
        The header is missing or does not match.
    """
    expected = settings.admin_token.get_secret_value()
    if not expected:
        raise ForbiddenError("Admin endpoints are disabled")
    if not x_admin_token or not hmac.compare_digest(x_admin_token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected admin request with invalid token")
        raise AuthError("Unauthorized")


AdminDep = Depends(require_admin)
