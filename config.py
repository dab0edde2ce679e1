"""
config.py
Application settings from environment variables (prefix GYM_) or a .env file.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).with_name(".env")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GYM_",
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    db_file: Path = Path(__file__).with_name("gym.db")

    # Default admin created on first run
    default_admin_email: str = "admin@elite.com"
    default_admin_password: str = "admin123"

    # Billing
    max_backfill_cycles: int = 36  # per member, per billing run
    currency_symbol: str = "R$"

    # UI
    items_per_page: int = 10

    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
