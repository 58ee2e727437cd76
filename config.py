"""
Application settings

Read from the environment (and a local .env file when present).
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    DATABASE_URL: Optional[str] = None
    DATABASE_NAME: Optional[str] = None
    # Multi-document batches run inside a transaction only when the server is a replica set
    USE_TRANSACTIONS: bool = False
    # Change-stream watchers for the realtime stores (replica set required as well)
    REALTIME_ENABLED: bool = False

    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ALGORITHM: str = "HS256"

    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
    CURRENCY: str = "INR"

    INVOICE_DUE_DAYS: int = 30
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000


@lru_cache
def get_settings() -> Settings:
    return Settings()
