"""
flushplan.db.query_runner

`QueryRunner` implementation on SQLAlchemy async Core.

Responsibilities:
- Build INSERT/UPDATE/DELETE/SELECT statements from physical names and value maps.
- Use RETURNING where the dialect supports it, and re-select where it does not.
- Drive (or join) the connection's transaction.
- Translate SQLAlchemy statement errors and timeouts into `QueryFailedError`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import StatementError
from sqlalchemy.ext.asyncio import AsyncConnection

from flushplan.observability.logging import get_logger
from flushplan.persistence.errors import QueryFailedError
from flushplan.persistence.protocols import SqlExpression, UpdateResult

log = get_logger(__name__)


class SqlAlchemyQueryRunner:
    def __init__(
        self,
        conn: AsyncConnection,
        schema: sa.MetaData,
        *,
        statement_timeout: float | None = None,
        autocommit: bool = False,
    ) -> None:
        self._conn = conn
        self._schema = schema
        self._timeout = statement_timeout
        self._autocommit = autocommit
        # A transaction already open when the runner is created belongs to the caller.
        self._outer = conn.in_transaction()
        self._owned = False

    @property
    def is_transaction_active(self) -> bool:
        return self._outer or self._owned

    async def start_transaction(self) -> None:
        if self._autocommit:
            return
        # Snapshot reads may already have autobegun the connection's transaction.
        if not self._conn.in_transaction():
            await self._conn.begin()
        self._owned = True

    async def commit_transaction(self) -> None:
        if self._autocommit or not self._owned:
            return
        await self._conn.commit()
        self._owned = False

    async def rollback_transaction(self) -> None:
        if self._autocommit or not self._owned:
            return
        await self._conn.rollback()
        self._owned = False

    async def release(self) -> None:
        """
        End a transaction that only snapshot reads opened. Leaves outer and owned
        transactions alone.
        """

        if not self._outer and not self._owned and self._conn.in_transaction():
            await self._conn.rollback()

    # -- statements -------------------------------------------------------------------

    async def insert(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        returning: Sequence[str] = (),
    ) -> dict[str, Any]:
        t = self._table(table)
        stmt = sa.insert(t).values(self._values(t, values))
        dialect = self._conn.dialect

        if returning and dialect.insert_returning:
            result = await self._execute(stmt.returning(*(t.c[c] for c in returning)))
            row = dict(result.mappings().one())
            await self._maybe_commit()
            return row

        result = await self._execute(stmt)
        if not returning:
            await self._maybe_commit()
            return {}
        primary_key = result.inserted_primary_key or ()
        where = {c.name: v for c, v in zip(t.primary_key.columns, primary_key, strict=False)}
        row = await self.select_one(table, where) or {}
        await self._maybe_commit()
        return {c: row.get(c) for c in returning}

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        where: Mapping[str, Any],
        *,
        returning: Sequence[str] = (),
    ) -> UpdateResult:
        t = self._table(table)
        stmt = sa.update(t).where(*self._where(t, where)).values(self._values(t, values))

        if returning and self._conn.dialect.update_returning:
            result = await self._execute(stmt.returning(*(t.c[c] for c in returning)))
            rows = result.mappings().all()
            await self._maybe_commit()
            return UpdateResult(affected=len(rows), returned=dict(rows[0]) if rows else {})

        result = await self._execute(stmt)
        affected = result.rowcount
        returned: dict[str, Any] = {}
        if returning and affected:
            # The predicate may have included the old version; re-read by primary key only.
            keys = {c.name for c in t.primary_key.columns}
            row = await self.select_one(table, {k: v for k, v in where.items() if k in keys})
            returned = {c: (row or {}).get(c) for c in returning}
        await self._maybe_commit()
        return UpdateResult(affected=affected, returned=returned)

    async def delete(self, table: str, where: Mapping[str, Any]) -> int:
        t = self._table(table)
        result = await self._execute(sa.delete(t).where(*self._where(t, where)))
        await self._maybe_commit()
        return result.rowcount

    async def select_one(self, table: str, where: Mapping[str, Any]) -> dict[str, Any] | None:
        t = self._table(table)
        result = await self._execute(sa.select(t).where(*self._where(t, where)))
        row = result.mappings().first()
        return None if row is None else dict(row)

    async def select_many(self, table: str, where: Mapping[str, Any]) -> list[dict[str, Any]]:
        t = self._table(table)
        result = await self._execute(sa.select(t).where(*self._where(t, where)))
        return [dict(r) for r in result.mappings().all()]

    # -- helpers ------------------------------------------------------------------------

    def _table(self, name: str) -> sa.Table:
        return self._schema.tables[name]

    @staticmethod
    def _values(t: sa.Table, values: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, value in values.items():
            if value is SqlExpression.INCREMENT:
                out[name] = t.c[name] + 1
            else:
                out[name] = value
        return out

    @staticmethod
    def _where(t: sa.Table, where: Mapping[str, Any]) -> list[sa.ColumnElement[bool]]:
        return [
            t.c[name].is_(None) if value is None else t.c[name] == value
            for name, value in where.items()
        ]

    async def _maybe_commit(self) -> None:
        if self._autocommit and not self._outer:
            await self._conn.commit()

    async def _execute(self, stmt: sa.Executable) -> sa.CursorResult[Any]:
        try:
            if self._timeout is None:
                return await self._conn.execute(stmt)
            return await asyncio.wait_for(self._conn.execute(stmt), timeout=self._timeout)
        except StatementError as e:
            raise QueryFailedError(
                str(e.orig) if e.orig is not None else str(e),
                statement=e.statement,
                parameters=e.params,
            ) from e
        except TimeoutError as e:
            statement = str(stmt.compile(dialect=self._conn.dialect))
            log.warning("query_runner.timeout", timeout=self._timeout, statement=statement)
            raise QueryFailedError(
                f"statement timed out after {self._timeout}s", statement=statement
            ) from e


# --- Module Notes -----------------------------------------------------------
# With `autocommit=True` every write commits on its own; the begin/commit/rollback hooks
# become no-ops and a failure leaves earlier statements in place.
