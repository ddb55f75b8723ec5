"""
tests.conftest

Shared fixtures: a small mapped model, in-memory collaborators, and a SQLite-backed manager.

Responsibilities:
- Describe the test entities once, the way an application would at startup.
- Provide a recording `QueryRunner` and dict-backed `SnapshotLoader` for unit tests.
- Provide a temporary-file SQLite engine (aiosqlite) for integration tests.
"""

from __future__ import annotations

import itertools
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio

from flushplan.db.session import create_engine
from flushplan.metadata.model import (
    ALL_CASCADES,
    Cascade,
    ColumnMetadata,
    ColumnType,
    EmbeddedMetadata,
    EntityMetadata,
    JoinColumn,
    JunctionMetadata,
    RelationKind,
    RelationMetadata,
)
from flushplan.metadata.registry import MetadataRegistry
from flushplan.persistence.errors import QueryFailedError
from flushplan.persistence.protocols import UpdateResult
from flushplan.services.entity_manager import EntityManager
from flushplan.settings import Settings


class Entity:
    # Attributes that were never assigned read as UNSET through the metadata accessors.
    def __init__(self, **values: Any) -> None:
        for name, value in values.items():
            setattr(self, name, value)


class Author(Entity):
    pass


class Post(Entity):
    pass


class Category(Entity):
    pass


class Department(Entity):
    pass


class Employee(Entity):
    pass


class Address:
    def __init__(self, **values: Any) -> None:
        for name, value in values.items():
            setattr(self, name, value)


class Customer(Entity):
    pass


def _pk(type: ColumnType = ColumnType.integer, generated: str = "increment") -> ColumnMetadata:
    return ColumnMetadata("id", type, primary=True, generated=generated)  # type: ignore[arg-type]


def build_registry() -> MetadataRegistry:
    author = EntityMetadata(
        target=Author,
        table_name="authors",
        columns=(
            _pk(),
            ColumnMetadata("name"),
            ColumnMetadata("email", nullable=True, unique=True),
            ColumnMetadata("tags", ColumnType.simple_array, nullable=True),
            ColumnMetadata("settings", ColumnType.json, nullable=True),
            ColumnMetadata("birthday", ColumnType.date, nullable=True),
            ColumnMetadata("active", ColumnType.boolean, default=True),
            ColumnMetadata("version", ColumnType.integer, is_version=True),
            ColumnMetadata("created_at", ColumnType.datetime, is_create_date=True),
            ColumnMetadata("updated_at", ColumnType.datetime, is_update_date=True),
        ),
        relations=(
            RelationMetadata(
                "posts",
                RelationKind.one_to_many,
                Post,
                inverse_side="author",
                cascade=ALL_CASCADES,
            ),
        ),
    )
    post = EntityMetadata(
        target=Post,
        table_name="posts",
        columns=(_pk(), ColumnMetadata("title")),
        relations=(
            RelationMetadata(
                "author",
                RelationKind.many_to_one,
                Author,
                join_columns=(JoinColumn("author_id"),),
                inverse_side="posts",
                nullable=False,
                on_delete="CASCADE",
            ),
            RelationMetadata(
                "categories",
                RelationKind.many_to_many,
                Category,
                cascade=frozenset({Cascade.insert}),
                junction=JunctionMetadata(
                    "post_categories",
                    join_columns=(JoinColumn("post_id"),),
                    inverse_join_columns=(JoinColumn("category_id"),),
                ),
            ),
        ),
    )
    category = EntityMetadata(
        target=Category,
        table_name="categories",
        columns=(_pk(ColumnType.uuid, "uuid"), ColumnMetadata("name")),
    )
    department = EntityMetadata(
        target=Department,
        table_name="departments",
        columns=(_pk(), ColumnMetadata("name")),
        relations=(
            RelationMetadata(
                "manager",
                RelationKind.many_to_one,
                Employee,
                join_columns=(JoinColumn("manager_id"),),
                cascade=frozenset({Cascade.insert, Cascade.remove}),
            ),
        ),
    )
    employee = EntityMetadata(
        target=Employee,
        table_name="employees",
        columns=(_pk(), ColumnMetadata("name")),
        relations=(
            RelationMetadata(
                "department",
                RelationKind.many_to_one,
                Department,
                join_columns=(JoinColumn("department_id"),),
                nullable=False,
                cascade=frozenset({Cascade.insert, Cascade.remove}),
            ),
        ),
    )
    customer = EntityMetadata(
        target=Customer,
        table_name="customers",
        columns=(
            _pk(),
            ColumnMetadata("name"),
            ColumnMetadata("street", embedded="address", nullable=True),
            ColumnMetadata("city", embedded="address", nullable=True),
            ColumnMetadata("seen_at", ColumnType.datetime, nullable=True),
        ),
        embeddeds=(EmbeddedMetadata("address", Address),),
    )
    return MetadataRegistry([author, post, category, department, employee, customer])


@pytest.fixture
def registry() -> MetadataRegistry:
    return build_registry()


# -- in-memory collaborators ------------------------------------------------------------


@dataclass
class Call:
    op: str
    table: str
    values: dict[str, Any] = field(default_factory=dict)
    where: dict[str, Any] = field(default_factory=dict)


class RecordingRunner:
    """
    Records every statement. Inserts hand out sequential integer ids per table and echo
    the requested `returning` columns; updates report `affected` rows.
    """

    def __init__(self, *, outer_transaction: bool = False) -> None:
        self.calls: list[Call] = []
        self.events: list[str] = []
        self.affected = 1
        self.fail_on: tuple[str, str] | None = None
        self._outer = outer_transaction
        self._active = False
        self._ids: dict[str, itertools.count[int]] = {}

    @property
    def is_transaction_active(self) -> bool:
        return self._outer or self._active

    async def start_transaction(self) -> None:
        self.events.append("begin")
        self._active = True

    async def commit_transaction(self) -> None:
        self.events.append("commit")
        self._active = False

    async def rollback_transaction(self) -> None:
        self.events.append("rollback")
        self._active = False

    def _maybe_fail(self, op: str, table: str) -> None:
        if self.fail_on == (op, table):
            raise QueryFailedError(f"{op} on {table} failed", statement=f"{op} {table}")

    async def insert(
        self, table: str, values: Mapping[str, Any], *, returning: Sequence[str] = ()
    ) -> dict[str, Any]:
        self._maybe_fail("insert", table)
        self.calls.append(Call("insert", table, dict(values)))
        out: dict[str, Any] = {}
        for name in returning:
            if name == "id" and values.get("id") is None:
                out[name] = next(self._ids.setdefault(table, itertools.count(1)))
            else:
                out[name] = values.get(name)
        return out

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        where: Mapping[str, Any],
        *,
        returning: Sequence[str] = (),
    ) -> UpdateResult:
        self._maybe_fail("update", table)
        self.calls.append(Call("update", table, dict(values), dict(where)))
        return UpdateResult(affected=self.affected)

    async def delete(self, table: str, where: Mapping[str, Any]) -> int:
        self._maybe_fail("delete", table)
        self.calls.append(Call("delete", table, where=dict(where)))
        return 1

    async def select_one(self, table: str, where: Mapping[str, Any]) -> dict[str, Any] | None:
        return None

    async def select_many(self, table: str, where: Mapping[str, Any]) -> list[dict[str, Any]]:
        return []

    def ops(self) -> list[tuple[str, str]]:
        return [(c.op, c.table) for c in self.calls]


class DictLoader:
    """
    Snapshot loader over a dict keyed by (entity class, primary key value).
    """

    def __init__(self, snapshots: dict[tuple[type, Any], dict[str, Any]] | None = None) -> None:
        self.snapshots = snapshots or {}
        self.loaded: list[tuple[type, Any]] = []

    def store(self, target: type, id: Any, **snapshot: Any) -> None:
        self.snapshots[(target, id)] = {"id": id, **snapshot}

    async def load(
        self, metadata: EntityMetadata, identifier: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        key = (metadata.target, identifier.get("id"))
        self.loaded.append(key)
        snapshot = self.snapshots.get(key)
        return None if snapshot is None else dict(snapshot)


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def loader() -> DictLoader:
    return DictLoader()


# -- SQLite integration -------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(env="test", database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")


@pytest_asyncio.fixture
async def manager(settings: Settings, registry: MetadataRegistry) -> AsyncIterator[EntityManager]:
    engine = create_engine(settings)
    em = EntityManager(engine=engine, registry=registry, settings=settings)
    await em.create_tables()
    try:
        yield em
    finally:
        await engine.dispose()


# --- Module Notes -----------------------------------------------------------
# Entities are plain classes: the descriptor model, not the class, tells the engine what
# is mapped.
