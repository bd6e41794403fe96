"""Resolve gateway credentials from the ``app_settings`` row with env fallback."""

from __future__ import annotations

import logging

from babylon_core.state.repository import AppSettingsRepository
from pydantic import BaseModel, ConfigDict, SecretStr
from sqlalchemy.ext.asyncio import AsyncSession

from babylon_api.config import APISettings, AsaasEnvironment

logger = logging.getLogger(__name__)


class GatewaySettings(BaseModel):
    """Immutable snapshot of the gateway configuration for one request."""

    model_config = ConfigDict(frozen=True)

    api_key: SecretStr
    environment: AsaasEnvironment
    webhook_token: SecretStr
    timeout: float = 15.0
    webhook_auth_required: bool = True

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.get_secret_value())


def mask_secret(value: str | None) -> str:
    """Mask all but the last four characters of *value*."""
    if not value:
        return ""
    if len(value) <= 4:
        return "****"
    return "****" + value[-4:]


class SettingsProvider:
    """Build :class:`GatewaySettings` for the current request.

    Database values win over process configuration field by field; an
    empty or missing column falls back to the ``BABYLON_ASAAS_*``
    environment value.
    """

    def __init__(self, session: AsyncSession, settings: APISettings) -> None:
        self._session = session
        self._settings = settings

    async def load(self) -> GatewaySettings:
        """Read the ``main`` settings row and merge it with the fallbacks."""
        row = await AppSettingsRepository(self._session).get()

        api_key = (row.asaas_api_key if row else None) or self._settings.asaas_api_key.get_secret_value()
        webhook_token = (
            row.asaas_webhook_token if row else None
        ) or self._settings.asaas_webhook_token.get_secret_value()

        environment = self._settings.asaas_environment
        stored_env = row.asaas_environment if row else None
        if stored_env:
            try:
                environment = AsaasEnvironment(stored_env)
            except ValueError:
                logger.warning("Ignoring unknown asaas_environment %r in app_settings", stored_env)

        return GatewaySettings(
            api_key=SecretStr(api_key),
            environment=environment,
            webhook_token=SecretStr(webhook_token),
            timeout=self._settings.asaas_timeout,
            webhook_auth_required=self._settings.webhook_auth_required,
        )
