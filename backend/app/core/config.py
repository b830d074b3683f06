"""Application configuration loaded from environment variables.

Settings for database, API, authentication, and the credit cost table.
Uses pydantic-settings for validation and .env file support.
"""

import uuid
from decimal import Decimal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "credits_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "cv_builder_credits"
    database_user: str = "credits_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD
    database_pool_size: int = 10

    # CORS (Security)
    # Never set to ["*"] when allow_credentials=True
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Authentication
    # Local-first mode: DEFAULT_USER_ID provides user context without JWT
    # Hosted mode: auth_enabled=True, JWT cookie required on every request
    default_user_id: uuid.UUID | None = None
    auth_enabled: bool = False
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "cv-builder"
    auth_audience: str = "cv-builder"
    auth_cookie_name: str = "cv-builder.session-token"
    # Comma-separated emails that pass the admin gate without users.is_admin
    admin_emails: str = ""

    # Credit cost table (deployment-time configuration)
    metering_enabled: bool = True
    credit_cost_cv_generation: Decimal = Decimal("1")
    credit_cost_cover_letter_generation: Decimal = Decimal("1")
    credit_cost_ats_optimization: Decimal = Decimal("0.5")
    credit_cost_pdf_download: Decimal = Decimal("0")

    # Free tier
    free_tier_initial_credits: Decimal = Decimal("3")
    low_credit_threshold: Decimal = Decimal("2")

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_promo_redeem: str = "5/minute"  # guards promo code guessing
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def protected_admin_emails(self) -> set[str]:
        """ADMIN_EMAILS parsed into a lowercase set."""
        return {e.strip().lower() for e in self.admin_emails.split(",") if e.strip()}

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate credit configuration and production security requirements.

        Checks:
        - Credit costs, free tier grant and low-balance threshold are non-negative
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars when auth is enabled in production
        """
        for field in (
            "credit_cost_cv_generation",
            "credit_cost_cover_letter_generation",
            "credit_cost_ats_optimization",
            "credit_cost_pdf_download",
            "free_tier_initial_credits",
            "low_credit_threshold",
        ):
            value = getattr(self, field)
            if value < 0:
                msg = f"{field.upper()} cannot be negative. Got: {value}"
                raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if self.auth_enabled:
                secret_value = self.auth_secret.get_secret_value()
                if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                    msg = (
                        f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                        "characters when AUTH_ENABLED=true in production."
                    )
                    raise ValueError(msg)

        return self


settings = Settings()
