"""Application configuration using pydantic-settings."""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration loaded from environment / .env file."""

    # ── Data service ──────────────────────────────────────────────────────────
    api_base_url: str = Field(
        default="http://localhost:3000/api",
        description="Base URL of the catalog data service",
    )
    request_timeout_seconds: float = Field(default=30.0)
    # Only idempotent GETs are retried; mutations are retried by the operator.
    request_max_retries: int = Field(default=2)
    request_retry_delay_seconds: float = Field(default=0.5)

    # ── List views ────────────────────────────────────────────────────────────
    search_debounce_seconds: float = Field(
        default=0.4,
        description="Trailing debounce applied to the free-text search input",
    )

    # ── Background jobs ───────────────────────────────────────────────────────
    job_poll_interval_seconds: float = Field(default=5.0)
    # 360 attempts at 5s is roughly 30 minutes before the poller gives up.
    job_poll_max_attempts: int = Field(default=360)
    job_done_message_ttl_seconds: float = Field(default=6.0)

    # ── Storage ───────────────────────────────────────────────────────────────
    state_dir: str = Field(default="data/state")

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default="logs/catalog-console.log")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
