"""Tests for application configuration.

Settings for database, authentication and the credit cost table. Tests
cover defaults, env var loading, and validation.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.core.config import _INSECURE_DEFAULT_PASSWORD, Settings

# Reusable test constants
_SECURE_DB_PASSWORD = "my-secure-production-password-123!"
_TEST_AUTH_SECRET = "a" * 64
_PRODUCTION = "production"


class TestProductionSecurityValidation:
    """Tests for production security requirements."""

    def test_allows_default_password_in_development(self):
        """Default password is allowed in development environment."""
        s = Settings(
            environment="development",
            database_password=_INSECURE_DEFAULT_PASSWORD,
        )
        assert s.database_password == _INSECURE_DEFAULT_PASSWORD

    def test_rejects_default_password_in_production(self):
        """Default password is rejected in production environment."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(
                environment=_PRODUCTION,
                database_password=_INSECURE_DEFAULT_PASSWORD,
            )

        errors = exc_info.value.errors()
        assert len(errors) == 1
        assert "Cannot use default database password in production" in str(
            errors[0]["msg"]
        )

    def test_allows_custom_password_in_production(self):
        """Custom password is allowed in production environment."""
        s = Settings(
            environment=_PRODUCTION,
            database_password=_SECURE_DB_PASSWORD,
        )
        assert s.database_password == _SECURE_DB_PASSWORD

    def test_rejects_short_auth_secret_in_production_when_auth_enabled(self):
        """AUTH_SECRET under 32 chars is rejected in production."""
        with pytest.raises(ValidationError, match="AUTH_SECRET must be at least"):
            Settings(
                environment=_PRODUCTION,
                database_password=_SECURE_DB_PASSWORD,
                auth_enabled=True,
                auth_secret="short",
            )

    def test_allows_valid_auth_secret_in_production(self):
        """A 64-char secret passes validation in production."""
        s = Settings(
            environment=_PRODUCTION,
            database_password=_SECURE_DB_PASSWORD,
            auth_enabled=True,
            auth_secret=_TEST_AUTH_SECRET,
        )
        assert s.auth_secret.get_secret_value() == _TEST_AUTH_SECRET

    def test_rejects_wildcard_origin(self):
        """Wildcard CORS origin is incompatible with credentials."""
        with pytest.raises(ValidationError, match="must not contain"):
            Settings(allowed_origins=["*"])


class TestAuthConfigDefaults:
    """Auth settings have correct defaults."""

    def test_auth_enabled_defaults_to_false(self):
        """Auth is disabled by default for local development."""
        s = Settings()
        assert s.auth_enabled is False

    def test_auth_issuer_and_audience_default_to_cv_builder(self):
        """JWT issuer and audience claims default to 'cv-builder'."""
        s = Settings()
        assert s.auth_issuer == "cv-builder"
        assert s.auth_audience == "cv-builder"

    def test_default_user_id_defaults_to_none(self):
        """No local-mode user unless configured."""
        s = Settings()
        assert s.default_user_id is None


class TestCreditConfig:
    """Credit cost table and free tier settings."""

    def test_default_costs(self):
        """CV and cover letter cost 1 credit, ATS 0.5, PDF download is free."""
        s = Settings()
        assert s.credit_cost_cv_generation == Decimal("1")
        assert s.credit_cost_cover_letter_generation == Decimal("1")
        assert s.credit_cost_ats_optimization == Decimal("0.5")
        assert s.credit_cost_pdf_download == Decimal("0")

    def test_free_tier_defaults(self):
        """New accounts get 3 credits; low-balance warning below 2."""
        s = Settings()
        assert s.free_tier_initial_credits == Decimal("3")
        assert s.low_credit_threshold == Decimal("2")
        assert s.metering_enabled is True

    def test_rejects_negative_cost(self):
        """A negative cost would turn a debit into a credit."""
        with pytest.raises(ValidationError, match="CREDIT_COST_CV_GENERATION"):
            Settings(credit_cost_cv_generation=Decimal("-1"))

    def test_rejects_negative_free_tier(self):
        """Free tier grant cannot be negative."""
        with pytest.raises(ValidationError, match="FREE_TIER_INITIAL_CREDITS"):
            Settings(free_tier_initial_credits=Decimal("-3"))

    def test_cost_loaded_from_env(self, monkeypatch: pytest.MonkeyPatch):
        """Costs are deployment-time configuration."""
        monkeypatch.setenv("CREDIT_COST_ATS_OPTIMIZATION", "0.25")
        s = Settings()
        assert s.credit_cost_ats_optimization == Decimal("0.25")

    def test_metering_enabled_loaded_from_env(self, monkeypatch: pytest.MonkeyPatch):
        """METERING_ENABLED=false turns the credit gates off."""
        monkeypatch.setenv("METERING_ENABLED", "false")
        s = Settings()
        assert s.metering_enabled is False


class TestProtectedAdminEmails:
    """ADMIN_EMAILS parsing."""

    def test_parses_comma_separated_lowercase(self):
        """Emails are trimmed and lowercased; blanks are ignored."""
        s = Settings(admin_emails=" Admin@Example.com, ,ops@example.com ")
        assert s.protected_admin_emails == {"admin@example.com", "ops@example.com"}

    def test_empty_by_default(self):
        """No protected admins unless configured."""
        s = Settings()
        assert s.protected_admin_emails == set()


class TestDatabaseUrls:
    """Database URL construction."""

    def test_async_url_uses_asyncpg(self):
        """Application URL uses the asyncpg driver."""
        s = Settings(database_host="db", database_port=5433, database_name="credits")
        assert s.database_url.startswith("postgresql+asyncpg://")
        assert s.database_url.endswith("@db:5433/credits")

    def test_sync_url_for_alembic(self):
        """Alembic URL uses the default sync driver."""
        s = Settings()
        assert s.database_url_sync.startswith("postgresql://")


class TestServerBinding:
    """Host and port belong to the uvicorn command line, not Settings."""

    @pytest.mark.parametrize("field", ["api_host", "api_port"])
    def test_no_server_binding_fields(self, field):
        assert field not in Settings.model_fields
