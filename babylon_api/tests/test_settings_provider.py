"""Tests for SettingsProvider and secret masking."""

from __future__ import annotations

import pytest
from babylon_core.state.repository import AppSettingsRepository
from pydantic import ValidationError as PydanticValidationError

from babylon_api.config import AsaasEnvironment
from babylon_api.services.settings_provider import SettingsProvider, mask_secret


class TestSettingsProvider:
    """Verify database values override environment fallbacks."""

    @pytest.mark.asyncio
    async def test_env_fallback_without_row(self, session, test_settings) -> None:
        gateway = await SettingsProvider(session, test_settings).load()
        assert gateway.api_key.get_secret_value() == "test-api-key"
        assert gateway.webhook_token.get_secret_value() == "whk-test-token"
        assert gateway.environment is AsaasEnvironment.SANDBOX
        assert gateway.timeout == test_settings.asaas_timeout
        assert gateway.webhook_auth_required is True

    @pytest.mark.asyncio
    async def test_row_values_win(self, session, test_settings) -> None:
        await AppSettingsRepository(session).upsert(
            asaas_api_key="db-key", asaas_environment="production", asaas_webhook_token="db-token"
        )
        gateway = await SettingsProvider(session, test_settings).load()
        assert gateway.api_key.get_secret_value() == "db-key"
        assert gateway.webhook_token.get_secret_value() == "db-token"
        assert gateway.environment is AsaasEnvironment.PRODUCTION

    @pytest.mark.asyncio
    async def test_empty_columns_fall_back_per_field(self, session, test_settings) -> None:
        await AppSettingsRepository(session).upsert(asaas_api_key="db-key", asaas_webhook_token="")
        gateway = await SettingsProvider(session, test_settings).load()
        assert gateway.api_key.get_secret_value() == "db-key"
        assert gateway.webhook_token.get_secret_value() == "whk-test-token"
        assert gateway.environment is AsaasEnvironment.SANDBOX

    @pytest.mark.asyncio
    async def test_settings_are_frozen(self, session, test_settings) -> None:
        gateway = await SettingsProvider(session, test_settings).load()
        with pytest.raises(PydanticValidationError):
            gateway.timeout = 1.0  # type: ignore[misc]


class TestMaskSecret:
    """Verify secret masking for the settings endpoint."""

    def test_empty(self) -> None:
        assert mask_secret("") == ""
        assert mask_secret(None) == ""

    def test_short(self) -> None:
        assert mask_secret("abc") == "****"

    def test_keeps_last_four(self) -> None:
        assert mask_secret("$aact_abcdef123456") == "****3456"
