"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlatformEnv(str, Enum):
    """Deployment environment label."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class AsaasEnvironment(str, Enum):
    """Payment gateway environment selecting the REST base URL."""

    SANDBOX = "sandbox"
    PRODUCTION = "production"


class APISettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``BABYLON_`` (e.g. ``BABYLON_ASAAS_API_KEY=...``) or through a ``.env``
    file in the working directory.  Gateway credentials stored in the
    ``app_settings`` table take precedence over the values here.
    """

    model_config = SettingsConfigDict(
        env_prefix="BABYLON_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # PostgreSQL (asyncpg) or SQLite (aiosqlite) connection string.
    database_url: str = "sqlite+aiosqlite:///.babylon/billing.db"

    platform_env: PlatformEnv = PlatformEnv.DEV

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:5173"]

    # Whether CORS responses include credentials (cookies, auth headers).
    cors_allow_credentials: bool = True

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled.

        Browsers silently reject ``Access-Control-Allow-Origin: *`` when
        ``Access-Control-Allow-Credentials: true`` is present.  Fail fast at
        startup instead.
        """
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    # Structured JSON logging.
    structured_logging: bool = False

    # Asaas gateway fallbacks, used when the app_settings row leaves them empty.
    asaas_api_key: SecretStr = SecretStr("")
    asaas_environment: AsaasEnvironment = AsaasEnvironment.SANDBOX
    asaas_webhook_token: SecretStr = SecretStr("")
    asaas_timeout: float = 15.0

    # Reject webhook deliveries when no shared secret is configured.
    webhook_auth_required: bool = True

    # Shared token for the admin endpoints; empty disables them.
    admin_token: SecretStr = SecretStr("")

    # First-invoice discovery after subscription creation.
    first_payment_max_retries: int = 4
    first_payment_base_delay: float = 0.5
    first_payment_max_delay: float = 4.0


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()
