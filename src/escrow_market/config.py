"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup. If a setting is malformed, the app fails fast with a clear
error message.

Usage:
    from escrow_market.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Escrow Market."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://market:market_dev"
        "@localhost:5432/escrow_market"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Ledger ---
    # Recorded as the arbitrator the first time the ledger is initialized.
    # Changing it later has no effect on an existing ledger.
    ledger_admin: str = ""
    principal_header: str = "X-Principal"

    # --- Settlement (simulated substrate) ---
    settlement_failing_recipients: str = ""

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def failing_recipient_list(self) -> list[str]:
        """Parse comma-separated failing recipients into a list."""
        if not self.settlement_failing_recipients:
            return []
        return [
            p.strip() for p in self.settlement_failing_recipients.split(",") if p.strip()
        ]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
