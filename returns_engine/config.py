from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./returns.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Razorpay Payment Gateway (card refunds)
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""

    # Document numbering
    RETURN_NUMBER_PREFIX: str = "RTN"

    # Store credit codes: no 0/O or 1/I/L
    STORE_CREDIT_CODE_PREFIX: str = "SC-"
    STORE_CREDIT_CODE_LENGTH: int = 5
    STORE_CREDIT_CODE_MAX_ATTEMPTS: int = 10
    STORE_CREDIT_CODE_ALPHABET: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

    # Business rules - accepts JSON string, comma-separated, or list
    RETURNABLE_ORDER_STATUSES: list[str] = ["completed", "paid", "fulfilled", "delivered"]
    CARD_PAYMENT_METHODS: list[str] = ["credit_card", "debit_card"]

    MAX_PAGE_SIZE: int = 100

    @field_validator("RETURNABLE_ORDER_STATUSES", "CARD_PAYMENT_METHODS", mode="before")
    @classmethod
    def parse_string_list(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
