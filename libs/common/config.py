from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"

    # Storage backend selection. "auto" tries the document store first and
    # falls back to flat files; "file" skips the document store entirely.
    STORAGE_BACKEND: Literal["auto", "file"] = "auto"

    # Document store (MongoDB)
    MONGODB_URI: Optional[str] = None
    DB_PASSWORD: str = ""
    MONGODB_DB: str = "storefront"
    MONGODB_TIMEOUT_MS: int = 3000

    # Flat-file store
    DATA_DIR: Path = Path("database")

    # Credentials
    BCRYPT_ROUNDS: int = 12
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 120

    # Catalog / orders
    DEFAULT_CURRENCY: Literal["EGP", "USD", "EUR"] = "EGP"
    ORDER_NUMBER_PREFIX: str = "HOT"
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # Optimistic concurrency
    CONFLICT_RETRY_ATTEMPTS: int = 3

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("BCRYPT_ROUNDS")
    @classmethod
    def check_bcrypt_rounds(cls, v: int) -> int:
        if v < 10:
            raise ValueError("BCRYPT_ROUNDS must be at least 10")
        if v > 31:
            raise ValueError("BCRYPT_ROUNDS must be at most 31")
        return v

    @field_validator("MAX_LOGIN_ATTEMPTS", "LOCKOUT_MINUTES", "CONFLICT_RETRY_ATTEMPTS")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @property
    def mongodb_connection_string(self) -> Optional[str]:
        """MONGODB_URI with the ``<db_password>`` placeholder filled in."""
        if not self.MONGODB_URI:
            return None
        return self.MONGODB_URI.replace("<db_password>", self.DB_PASSWORD)


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
