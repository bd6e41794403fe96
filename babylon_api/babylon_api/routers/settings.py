"""Gateway settings administration backed by the ``app_settings`` row."""

from __future__ import annotations

import logging

from babylon_core.state.repository import AppSettingsRepository
from fastapi import APIRouter

from babylon_api.dependencies import AdminDep, SessionDep, SettingsDep
from babylon_api.schemas import GatewaySettingsResponse, GatewaySettingsUpdate
from babylon_api.services.settings_provider import GatewaySettings, SettingsProvider, mask_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"], dependencies=[AdminDep])


def _to_response(gateway: GatewaySettings) -> GatewaySettingsResponse:
    api_key = gateway.api_key.get_secret_value()
    token = gateway.webhook_token.get_secret_value()
    return GatewaySettingsResponse(
        asaas_api_key=mask_secret(api_key),
        asaas_environment=gateway.environment.value,
        asaas_webhook_token=mask_secret(token),
        api_key_configured=gateway.has_api_key,
        webhook_token_configured=bool(token),
    )


@router.get("", response_model=GatewaySettingsResponse)
async def get_gateway_settings(session: SessionDep, settings: SettingsDep) -> GatewaySettingsResponse:
    """Return the effective gateway settings with secrets masked."""
    return _to_response(await SettingsProvider(session, settings).load())


@router.put("", response_model=GatewaySettingsResponse)
async def update_gateway_settings(
    body: GatewaySettingsUpdate,
    session: SessionDep,
    settings: SettingsDep,
) -> GatewaySettingsResponse:
    """Store gateway settings; an empty string clears a stored value."""
    changes = body.model_dump(exclude_unset=True)
    await AppSettingsRepository(session).upsert(**{key: value or None for key, value in changes.items()})
    logger.info("Gateway settings updated: %s", ", ".join(sorted(changes)) or "no fields")
    return _to_response(await SettingsProvider(session, settings).load())
