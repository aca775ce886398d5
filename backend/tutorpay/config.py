from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Tutor Payroll"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "postgresql+asyncpg://tutorpay:tutorpay@db:5432/tutorpay"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Business calendar. Weeks always run Saturday to Friday; the timezone only
    # decides what "today" is when checking whether a week has elapsed.
    business_timezone: str = "Australia/Sydney"

    # Invoicing
    default_hourly_rate: float = 0.0
    invoice_requires_reports: bool = True
    invoice_due_days: int = 14

    # Xero
    xero_api_url: str = "https://api.xero.com/api.xro/2.0"
    xero_payroll_url: str = "https://api.xero.com/payroll.xro/1.0"
    xero_access_token: str | None = None
    xero_tenant_id: str | None = None
    xero_timeout_seconds: float = 30.0
    xero_account_code: str = "200"
    xero_tax_type: str = "OUTPUT"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
