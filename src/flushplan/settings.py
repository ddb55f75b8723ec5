"""
flushplan.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for the engine and its SQLAlchemy runner.
- Offer a cached settings instance for callers that do not build their own.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Env-driven configuration:
    - Defaults safe for local dev (SQLite file via aiosqlite)
    - Single settings object passed to the engine factory and the EntityManager
    """

    model_config = SettingsConfigDict(env_prefix="FLUSHPLAN_", case_sensitive=False)

    # Environment controls toggle behavior like auto-creating tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "flushplan"
    log_level: str = "INFO"

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./flushplan.db"
    echo_sql: bool = False

    # Per-statement timeout; a timed out statement fails (and rolls back) the whole batch.
    statement_timeout_seconds: float | None = Field(default=None, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for every EntityManager.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Settings never carry metadata: the descriptor model is built in code and handed to
# `MetadataRegistry` explicitly.
