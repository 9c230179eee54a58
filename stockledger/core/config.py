"""
Stock Ledger Configuration
Core settings for the stock ledger and reconciliation engine
"""
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application Info
    APP_NAME: str = "Stock Ledger"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./stockledger.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Path = Path("logs")
    LOG_FILE: str = "stockledger.log"
    ERROR_LOG_FILE: str = "error.log"

    # Business Logic Settings
    DEFAULT_CURRENCY: str = "SAR"

    # Financial Precision
    QUANTITY_DECIMAL_PLACES: int = 4
    PRICE_DECIMAL_PLACES: int = 4
    WAC_DECIMAL_PLACES: int = 6
    CURRENCY_DECIMAL_PLACES: int = 2

    # Price variance detection (absolute amount per unit, not a percentage)
    PRICE_VARIANCE_TOLERANCE: Decimal = Decimal("0.00")
    REQUIRE_PERIOD_PRICES: bool = True

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        """Accept lower-case level names from the environment"""
        return v.upper()

    @field_validator("PRICE_VARIANCE_TOLERANCE")
    @classmethod
    def tolerance_not_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("PRICE_VARIANCE_TOLERANCE cannot be negative")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Global settings instance
settings = get_settings()
