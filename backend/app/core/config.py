from decimal import Decimal
from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global configuration for the billing backend.
    Values are read from the environment and from the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project
    project_name: str = "Inmobiliaria Billing API"
    api_v1_str: str = "/api/v1"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./dev.db"

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Admin routes (seed, suspension, renewal sweep)
    admin_api_token: Optional[str] = None

    # Billing
    billing_currency: str = "ARS"
    billing_tax_rate: Decimal = Decimal("0.21")  # IVA
    billing_trial_days: int = 7
    billing_grace_days: int = 2
    billing_grace_hours: int = 48
    billing_confirm_max_attempts: int = 3
    billing_default_gateway: str = "manual"
    mercadopago_access_token: Optional[str] = None
    mercadopago_api_url: str = "https://api.mercadopago.com"
    mercadopago_webhook_token: Optional[str] = None

    # Subscription change notifications (optional webhook)
    billing_events_webhook_url: Optional[str] = None
    billing_events_timeout_seconds: float = 5.0

    # Public URLs (checkout return links)
    public_app_url: str = "http://localhost:3000"

    # Logging
    log_dir: str = "log"
    log_level: str = "INFO"

    def resolved_public_app_url(self) -> str:
        """Base URL of the dashboard, without trailing slash."""
        return (self.public_app_url or "").strip().rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Returns the cached global settings instance."""
    return Settings()


settings = get_settings()
