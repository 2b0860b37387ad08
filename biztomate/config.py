"""
Configuration management using pydantic-settings.
Loads environment variables with type validation.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Biztomate Receipt Validation"
    app_version: str = "0.1.0"
    debug: bool = False

    # Local durable store (cached receipts, resolved entitlement)
    database_url: str = "sqlite+aiosqlite:///./biztomate.db"

    # Apple verifyReceipt endpoints
    apple_production_url: str = "https://buy.itunes.apple.com/verifyReceipt"
    apple_sandbox_url: str = "https://sandbox.itunes.apple.com/verifyReceipt"
    apple_shared_secret: str = ""
    apple_verify_timeout: float = 10.0
    apple_exclude_old_transactions: bool = True

    # Receipt validation gateway, as seen from the app
    receipt_validation_url: str = "http://localhost:8000/api/receipt-validation"
    receipt_validation_timeout: float = 25.0

    # Store product identifiers
    product_id_basic: str = "com.biztomate.scanner.basic"
    product_id_standard: str = "com.biztomate.scanner.standard"
    product_id_premium: str = "com.biztomate.scanner.premium"
    product_id_unlimited: str = "com.biztomate.scanner.unlimited"
    legacy_product_prefix: str = "com.biztomate.scanner.subscription."

    # Quotas and trial
    free_card_quota: int = 5
    trial_days: int = 7
    trial_card_quota: int = 100

    # Restore
    restore_concurrency: int = 4

    # OpenAI (business card extraction)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    ocr_timeout: float = 30.0

    # Rate limiting
    rate_limit_enabled: bool = True
    receipt_validation_rate_limit: str = "20/minute"

    # CORS
    cors_origins: str = "http://localhost:3000,http://localhost:8081"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Use dependency injection in FastAPI routes.
    """
    return Settings()
