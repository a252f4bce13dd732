# backend/app/core/config.py
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import BRAND_NAME, DEFAULT_CURRENCY, DEFAULT_TIMEZONE


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.info(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    """Runtime configuration loaded from the environment and backend/.env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    environment: str = Field(default="development", description="Deployment environment")
    is_testing: bool = Field(default=False, description="Set by the test suite")
    app_name: str = Field(default=BRAND_NAME)

    # Database
    database_url: str = Field(
        default="sqlite:///./practice_billing.db",
        alias="DATABASE_URL",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = Field(default=False)

    # Auth
    secret_key: SecretStr = Field(
        default=SecretStr("change-me-in-production"),
        description="Secret used to sign access tokens",
    )
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Public URLs
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")
    base_url: str = Field(
        default="http://localhost:8000",
        alias="BASE_URL",
        description="Public URL of this API, used for pay links sent by email",
    )

    # Stripe
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe webhook secret for local dev (Stripe CLI)",
    )
    stripe_webhook_secret_platform: SecretStr = Field(
        default=SecretStr(""),
        description="Platform events webhook secret (deployed)",
    )
    stripe_webhook_secret_connect: SecretStr = Field(
        default=SecretStr(""),
        description="Connect events webhook secret (deployed)",
    )
    stripe_currency: str = Field(default=DEFAULT_CURRENCY.lower())
    stripe_connect_country: str = Field(default="ES")

    # Email
    resend_api_key: str | None = Field(
        default=None,
        alias="RESEND_API_KEY",
        description="API key for Resend provider (optional)",
    )
    from_email: str = Field(default=f"{BRAND_NAME} <billing@example.com>", alias="FROM_EMAIL")
    email_enabled: bool = Field(default=True)
    email_batch_delay_seconds: float = Field(
        default=0.6,
        description="Pause between sequential emails in bulk sends",
    )

    # Cron
    cron_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Shared secret for cron-triggered endpoints",
    )

    # Google Calendar
    google_client_id: str = Field(default="")
    google_client_secret: SecretStr = Field(default=SecretStr(""))
    google_redirect_uri: str = Field(default="http://localhost:8000/api/auth/callback/calendar")
    calendar_token_encryption_key: str | None = Field(
        default=None,
        description="Fernet key for Google OAuth tokens at rest",
    )

    # Background jobs
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Monitoring
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    default_timezone: str = DEFAULT_TIMEZONE

    @field_validator("frontend_url", "base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def webhook_secrets(self) -> list[str]:
        """Build list of webhook secrets to try in order."""
        secrets = []
        for secret in (
            self.stripe_webhook_secret,
            self.stripe_webhook_secret_platform,
            self.stripe_webhook_secret_connect,
        ):
            secret_str = secret.get_secret_value() if secret else ""
            if secret_str:
                secrets.append(secret_str)
        return secrets

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key.get_secret_value())


settings = Settings()
if is_running_tests():
    settings.is_testing = True
