from decimal import Decimal
from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global CreditDesk settings.
    Values are read from the environment and from the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project
    project_name: str = "CreditDesk API"
    api_v1_str: str = "/api/v1"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./creditdesk.db"

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Payments (Stripe)
    stripe_api_key: Optional[str] = None
    default_currency: str = "eur"

    # VAT
    vat_service_url: str = "https://ec.europa.eu/taxation_customs/vies/rest-api"
    vat_timeout_seconds: float = 10.0
    standard_vat_rate: Decimal = Decimal("0.21")

    # Invoices
    invoice_number_prefix: str = "INV"
    manual_invoice_number_prefix: str = "MAN"

    # E-mail (SMTP)
    notifications_enabled: bool = True
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_sender: Optional[str] = None
    smtp_starttls: bool = True

    # Logging
    log_dir: Optional[str] = "log"
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return the cached global settings instance."""
    return Settings()


settings = get_settings()
