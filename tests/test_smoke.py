"""
tests.test_smoke

Minimal smoke tests for configuration, logging and engine bootstrap.

Responsibilities:
- Ensure env-driven settings, structlog configuration and batch context work together.
- Ensure a manager built from settings can create its tables and persist one row.
"""

from __future__ import annotations

import pytest
import structlog

from flushplan import EntityManager, __version__
from flushplan.metadata.registry import MetadataRegistry
from flushplan.observability.context import batch_context
from flushplan.observability.logging import configure_from_settings
from flushplan.settings import Settings

from conftest import Author


def test_settings_read_prefixed_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLUSHPLAN_STATEMENT_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("FLUSHPLAN_ENV", "test")

    settings = Settings()

    assert settings.statement_timeout_seconds == 2.5
    assert settings.env == "test"
    assert __version__


def test_batch_context_binds_and_restores() -> None:
    configure_from_settings(Settings(env="test", log_level="DEBUG"))

    with batch_context(operation="upsert", batch_id="b-1") as batch_id:
        assert batch_id == "b-1"
        assert structlog.contextvars.get_contextvars()["batch_id"] == "b-1"

    assert "batch_id" not in structlog.contextvars.get_contextvars()


@pytest.mark.asyncio
async def test_manager_from_settings(settings: Settings, registry: MetadataRegistry) -> None:
    manager = EntityManager.from_settings(registry, settings)
    try:
        await manager.create_tables()
        author = await manager.save(Author(name="Ann"))
        assert author.id == 1
    finally:
        await manager.engine.dispose()


# --- Module Notes -----------------------------------------------------------
# Behavioural coverage lives in test_entity_manager; this file only proves the wiring.
