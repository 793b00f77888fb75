# orderpay/settings.py
from __future__ import annotations
from decimal import Decimal
from typing import List, Optional
from pydantic import Field, AliasChoices, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json

from .schemas.orders import Currency

def _parse_cors(v: Optional[str | List[str]]) -> List[str]:
    """
    Accept JSON array (e.g. '["http://localhost:3000"]') or
    comma-separated string ('http://localhost:3000,http://127.0.0.1:3000').
    """
    if v is None:
        return ["http://localhost:3000", "http://127.0.0.1:3000"]
    if isinstance(v, list):
        return v
    s = v.strip()
    if not s:
        return ["http://localhost:3000", "http://127.0.0.1:3000"]
    # try JSON first
    try:
        parsed = json.loads(s)
        if isinstance(parsed, list) and all(isinstance(x, str) for x in parsed):
            return parsed
    except ValueError:
        pass
    # fallback: comma separated
    return [p.strip() for p in s.split(",") if p.strip()]

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",   # ignore unknown env keys instead of raising
    )

    # --- API ---
    api_host: str = Field(default="127.0.0.1", validation_alias=AliasChoices("API_HOST",))
    api_port: int = Field(default=8000,        validation_alias=AliasChoices("API_PORT",))
    cors_origins_raw: Optional[str | List[str]] = Field(
        default=None, validation_alias=AliasChoices("CORS_ORIGINS",)
    )
    admin_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("ADMIN_TOKEN",))

    # --- Logging ---
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL",))
    log_json: bool = Field(default=False, validation_alias=AliasChoices("LOG_JSON",))

    # --- Storage ---
    # "postgres" in production, "memory" for local runs and tests
    storage_backend: str = Field(default="postgres", validation_alias=AliasChoices("STORAGE_BACKEND",))
    database_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("DATABASE_URL",))
    db_pool_min_size: int = Field(default=2, validation_alias=AliasChoices("DB_POOL_MIN_SIZE",))
    db_pool_max_size: int = Field(default=10, validation_alias=AliasChoices("DB_POOL_MAX_SIZE",))
    db_command_timeout_seconds: float = Field(
        default=10.0, validation_alias=AliasChoices("DB_COMMAND_TIMEOUT_SECONDS",)
    )

    # --- Pricing ---
    store_currency: Currency = Field(default=Currency.IDR, validation_alias=AliasChoices("STORE_CURRENCY",))
    tax_rate: Decimal = Field(default=Decimal("0.11"), validation_alias=AliasChoices("TAX_RATE",))
    delivery_fee: Decimal = Field(default=Decimal("15000"), validation_alias=AliasChoices("DELIVERY_FEE",))
    admin_fee: Decimal = Field(default=Decimal("5000"), validation_alias=AliasChoices("ADMIN_FEE",))

    # --- Invoice provider ---
    provider_backend: str = Field(default="xendit", validation_alias=AliasChoices("PROVIDER_BACKEND",))
    xendit_secret_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("XENDIT_SECRET_KEY",)
    )
    xendit_base_url: str = Field(
        default="https://api.xendit.co", validation_alias=AliasChoices("XENDIT_BASE_URL",)
    )
    # accept either XENDIT_CALLBACK_TOKEN or WEBHOOK_CALLBACK_TOKEN
    callback_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("XENDIT_CALLBACK_TOKEN", "WEBHOOK_CALLBACK_TOKEN"),
    )
    invoice_duration_seconds: int = Field(
        default=86400, validation_alias=AliasChoices("INVOICE_DURATION_SECONDS",)
    )
    public_base_url: str = Field(
        default="http://localhost:3000", validation_alias=AliasChoices("PUBLIC_BASE_URL",)
    )
    provider_timeout_seconds: float = Field(
        default=10.0, validation_alias=AliasChoices("PROVIDER_TIMEOUT_SECONDS",)
    )

    # --- Reconciliation ---
    webhook_strict_mode: bool = Field(
        default=False, validation_alias=AliasChoices("WEBHOOK_STRICT_MODE",)
    )
    poll_interval_seconds: float = Field(
        default=5.0, validation_alias=AliasChoices("POLL_INTERVAL_SECONDS",)
    )
    poll_max_attempts: int = Field(default=60, validation_alias=AliasChoices("POLL_MAX_ATTEMPTS",))
    poll_in_background: bool = Field(
        default=False, validation_alias=AliasChoices("POLL_IN_BACKGROUND",)
    )
    notify_timeout_seconds: float = Field(
        default=5.0, validation_alias=AliasChoices("NOTIFY_TIMEOUT_SECONDS",)
    )

    @field_validator("store_currency", mode="before")
    @classmethod
    def _upper_currency(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors(self.cors_origins_raw)

# singleton
settings = Settings()
