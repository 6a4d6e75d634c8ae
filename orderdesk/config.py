# orderdesk/config.py
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_FILE = PROJECT_ROOT / ".env"

load_dotenv(ENV_FILE)  # load the root .env explicitly


class Settings(BaseSettings):
    # Core
    SERVICE_NAME: str = "orderdesk"
    LOG_LEVEL: str = "INFO"

    # Custody
    WALLET_SECRET: str | None = Field(
        default=None,
        validation_alias=AliasChoices("WALLET_SECRET", "wallet_secret"),
    )
    WALLET_STORE: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Venue / price source
    JUP_BASE_URL: str = "https://api.jup.ag"
    JUP_API_KEY: str | None = None
    EXTERNAL_TIMEOUT_SECONDS: float = 15.0

    # Order ledger
    ORDER_TTL_SECONDS: int = 600
    ORDER_SWEEP_INTERVAL_SECONDS: float = 30.0
    TRIGGER_MIN_NOTIONAL_USD: Decimal = Decimal("5")
    RECURRING_MIN_TOTAL_USD: Decimal = Decimal("100")
    RECURRING_MIN_PER_ORDER_USD: Decimal = Decimal("50")
    RECURRING_MIN_ORDERS: int = 2

    # Watchers
    WATCH_POLL_INTERVAL_SECONDS: float = 2.0
    MAX_WATCHERS_PER_OWNER: int = 10

    # Notifications
    NOTIFY_WEBHOOK_URL: str | None = None

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings", "ENV_FILE", "PROJECT_ROOT"]
