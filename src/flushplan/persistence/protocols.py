"""
flushplan.persistence.protocols

Collaborator interfaces consumed by the persistence pipeline.

Responsibilities:
- Define the query/transaction surface (`QueryRunner`) the executor drives.
- Define the snapshot loader used as the diff baseline.
- Define the SQL-side value marker used for version increments.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from flushplan.metadata.model import EntityMetadata


class SqlExpression(enum.Enum):
    # Placeholder for a value computed by the database inside the statement itself.
    INCREMENT = "increment"


@dataclass(frozen=True, slots=True)
class UpdateResult:
    affected: int
    returned: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class QueryRunner(Protocol):
    """
    Table/column names are physical (database) names. Values may contain `SqlExpression`
    markers; `returning` lists columns whose post-statement values the caller needs.
    """

    @property
    def is_transaction_active(self) -> bool: ...

    async def start_transaction(self) -> None: ...

    async def commit_transaction(self) -> None: ...

    async def rollback_transaction(self) -> None: ...

    async def insert(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        returning: Sequence[str] = (),
    ) -> dict[str, Any]: ...

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        where: Mapping[str, Any],
        *,
        returning: Sequence[str] = (),
    ) -> UpdateResult: ...

    async def delete(self, table: str, where: Mapping[str, Any]) -> int: ...

    async def select_one(
        self, table: str, where: Mapping[str, Any]
    ) -> dict[str, Any] | None: ...

    async def select_many(
        self, table: str, where: Mapping[str, Any]
    ) -> list[dict[str, Any]]: ...


class SnapshotLoader(Protocol):
    async def load(
        self, metadata: EntityMetadata, identifier: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        """
        Last-persisted state keyed by column property path / relation name; owning relations
        come back as primary-key maps (or lists of them for many-to-many).
        """
        ...


# --- Module Notes -----------------------------------------------------------
# `flushplan.db` ships SQLAlchemy implementations; tests drive the pipeline with an
# in-memory recording runner that satisfies the same protocol.
