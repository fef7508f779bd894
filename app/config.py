"""Application configuration settings."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Runtime environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()

# Recognised API key scopes
API_SCOPES = {"user", "admin"}


class Settings(BaseSettings):
    """Environment configuration for the marketplace payments backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///mimari_payments.db"
    ALLOW_DB_CREATE_ALL: bool = False
    SECRET_KEY: str = "change-me"
    CORS_ALLOW_ORIGINS: list[str] = [
        "https://mimariproje.com",
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True

    # --- Payments --------------------------------------------------------
    # Gateway credentials are stored in system_settings, not in the environment.
    FRONTEND_URL: str = "http://localhost:3000"
    PAYMENT_SUCCESS_PATH: str = "/satin-al/basarili"
    PAYMENT_FAILURE_PATH: str = "/satin-al/hata"
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = Field(default=12.0, gt=0, le=60)
    PAYMENT_DEFAULT_COMMISSION_RATE: Decimal = Field(default=Decimal("0.10"), ge=0, le=Decimal("0.30"))

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("FRONTEND_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class AppInfo(BaseModel):
    name: str = "mimari-payments-backend"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "API_SCOPES",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
