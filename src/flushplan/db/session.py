"""
flushplan.db.session

Async SQLAlchemy engine helpers.

Responsibilities:
- Create the async engine from settings.
- Turn on foreign-key enforcement for SQLite connections.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from flushplan.settings import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    # pool_pre_ping helps detect stale connections in long-lived processes.
    engine = create_async_engine(
        settings.database_url,
        pool_pre_ping=True,
        echo=settings.echo_sql,
    )
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    # SQLite ignores FOREIGN KEY clauses unless asked per connection.
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


# --- Module Notes -----------------------------------------------------------
# There is no session factory: the pipeline works on `AsyncConnection`s (Core), one per batch.
