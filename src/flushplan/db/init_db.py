"""
flushplan.db.init_db

DB initialization helpers (dev/test convenience).

Responsibilities:
- Create the tables described by a registry's schema.
"""

from __future__ import annotations

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine


async def init_db(engine: AsyncEngine, schema: MetaData) -> None:
    """
    Dev/test bootstrap: create tables if they don't exist.
    """

    # Use a transactional DDL block when supported by the backend.
    async with engine.begin() as conn:
        await conn.run_sync(schema.create_all)


# --- Module Notes -----------------------------------------------------------
# Production databases are expected to be migrated by whatever tool owns the schema;
# `build_schema` output can seed that tool but nothing here runs migrations.
