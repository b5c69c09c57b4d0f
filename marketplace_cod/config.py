from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./marketplace_cod.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Marketplace COD Settlement"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Cash on Delivery
    COD_ENABLED: bool = True
    COD_MIN_ORDER_AMOUNT_CENTS: int = 50000  # $500
    COD_MAX_ORDER_AMOUNT_CENTS: int = 50000000  # $500,000
    COD_FIXED_FEE_CENTS: int = 500  # $5
    COD_FEE_PERCENTAGE: Decimal = Decimal("0.02")  # 0.02 = 2%
    COD_MIN_DELIVERY_DAYS: int = 3
    COD_MAX_DELIVERY_DAYS: int = 5
    COD_HIGH_VALUE_THRESHOLD_CENTS: int = 1000000  # $10,000

    # Restricted areas - accepts JSON string, comma-separated, or list
    COD_RESTRICTED_STATES: list[str] = []
    COD_RESTRICTED_CITIES: list[str] = []
    COD_RESTRICTED_POSTAL_CODES: list[str] = []

    # Max allowed difference between collected cash and order total.
    # None keeps collection permissive and leaves mismatches to reconciliation.
    COD_COLLECTION_TOLERANCE_CENTS: Optional[int] = None

    # Vendor commission
    DEFAULT_COMMISSION_PERCENT: Decimal = Decimal("10.0")

    # Payouts
    PAYOUT_MINIMUM_AMOUNT_CENTS: int = 1000  # $10
    PAYOUT_FEE_TYPE: str = "percentage"  # percentage | fixed
    PAYOUT_FEE_PERCENTAGE: Decimal = Decimal("2.0")  # percent of payout amount
    PAYOUT_FEE_FIXED_CENTS: int = 100  # $1
    PAYOUT_HOLD_PERIOD_DAYS: int = 7

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"

    @field_validator(
        'COD_RESTRICTED_STATES',
        'COD_RESTRICTED_CITIES',
        'COD_RESTRICTED_POSTAL_CODES',
        mode='before',
    )
    @classmethod
    def parse_restricted_areas(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return []
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(',') if item.strip()]
        return v

    @field_validator('PAYOUT_FEE_TYPE')
    @classmethod
    def validate_fee_type(cls, v: str) -> str:
        v = v.lower()
        if v not in ("percentage", "fixed"):
            raise ValueError("PAYOUT_FEE_TYPE must be 'percentage' or 'fixed'")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
