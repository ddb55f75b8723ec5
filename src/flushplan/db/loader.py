"""
flushplan.db.loader

Snapshot loading through a `QueryRunner`.

Responsibilities:
- Read an entity's stored row by primary key.
- Shape it into the snapshot form the change computer diffs against.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from flushplan.metadata.model import EntityMetadata, JoinColumn
from flushplan.metadata.registry import MetadataRegistry
from flushplan.persistence.normalizer import ValueNormalizer
from flushplan.persistence.protocols import QueryRunner


class SqlAlchemySnapshotLoader:
    def __init__(
        self,
        runner: QueryRunner,
        registry: MetadataRegistry,
        normalizer: ValueNormalizer | None = None,
    ) -> None:
        self._runner = runner
        self._registry = registry
        self._normalizer = normalizer or ValueNormalizer()

    async def load(
        self, metadata: EntityMetadata, identifier: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        where = {}
        for column in metadata.primary_columns:
            where[column.db_name] = self._normalizer.to_database(
                column, identifier.get(column.property_path)
            )
        row = await self._runner.select_one(metadata.table_name, where)
        if row is None:
            return None

        snapshot: dict[str, Any] = {}
        for column in metadata.columns:
            if column.is_virtual or column.db_name not in row:
                continue
            snapshot[column.property_path] = self._normalizer.from_database(
                column, row[column.db_name]
            )

        for relation in metadata.relations_with_join_columns:
            snapshot[relation.property_name] = _id_map(row, relation.join_columns)

        for relation in metadata.owning_many_to_many:
            junction = relation.junction
            assert junction is not None
            owner_where = {}
            for jc in junction.join_columns:
                referenced = metadata.find_column(jc.referenced_column)
                assert referenced is not None
                owner_where[jc.name] = row[referenced.db_name]
            rows = await self._runner.select_many(junction.table_name, owner_where)
            snapshot[relation.property_name] = [
                ids
                for r in rows
                if (ids := _id_map(r, junction.inverse_join_columns)) is not None
            ]

        return snapshot


def _id_map(row: Mapping[str, Any], join_columns: tuple[JoinColumn, ...]) -> dict[str, Any] | None:
    # A partially null foreign key references nothing.
    ids = {jc.referenced_column: row.get(jc.name) for jc in join_columns}
    if any(v is None for v in ids.values()):
        return None
    return ids


# --- Module Notes -----------------------------------------------------------
# Snapshots hold related rows in id-only form; related entities are never loaded.
