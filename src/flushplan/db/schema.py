"""
flushplan.db.schema

SQLAlchemy `MetaData` built from the descriptor model.

Responsibilities:
- Map column descriptors to SQLAlchemy column types, defaults and constraints.
- Add implicit foreign-key columns for relations whose join columns are not mapped.
- Add junction tables for owning many-to-many relations.
"""

from __future__ import annotations

from typing import Any

import sqlalchemy as sa

from flushplan.metadata.model import (
    ColumnMetadata,
    ColumnType,
    EntityMetadata,
    JoinColumn,
    RelationMetadata,
)
from flushplan.metadata.registry import MetadataRegistry
from flushplan.persistence.errors import MetadataError
from flushplan.persistence.normalizer import ValueNormalizer

_TYPES: dict[ColumnType, Any] = {
    ColumnType.text: sa.Text,
    ColumnType.integer: sa.Integer,
    ColumnType.float: sa.Float,
    ColumnType.boolean: sa.Boolean,
    ColumnType.date: sa.Date,
    ColumnType.time: sa.Time,
    ColumnType.datetime: sa.DateTime,
    ColumnType.json: sa.JSON,
    ColumnType.simple_array: sa.Text,
    ColumnType.uuid: sa.Uuid,
}


def column_type(column: ColumnMetadata) -> sa.types.TypeEngine[Any]:
    if column.type == ColumnType.string:
        return sa.String(column.length or 255)
    return _TYPES[column.type]()


def build_schema(registry: MetadataRegistry) -> sa.MetaData:
    """
    One `Table` per distinct table name. Entities sharing a table (discriminated
    hierarchies) contribute their columns to it; such columns become nullable unless
    every entity on the table maps them.
    """

    schema = sa.MetaData()
    by_table: dict[str, list[EntityMetadata]] = {}
    for metadata in registry:
        by_table.setdefault(metadata.table_name, []).append(metadata)

    for table_name, entities in by_table.items():
        columns: dict[str, sa.Column[Any]] = {}
        for metadata in entities:
            for column in metadata.columns:
                if column.is_virtual or column.db_name in columns:
                    continue
                shared = len(entities) > 1 and not all(
                    any(c.db_name == column.db_name for c in e.columns) for e in entities
                )
                columns[column.db_name] = _column(column, force_nullable=shared)
            for relation in metadata.relations_with_join_columns:
                target = registry.target_of(relation)
                for jc in relation.join_columns:
                    if jc.name in columns:
                        continue
                    referenced = _referenced(target, jc)
                    columns[jc.name] = sa.Column(
                        jc.name,
                        column_type(referenced),
                        nullable=relation.nullable or len(entities) > 1,
                    )

        constraints = [
            _foreign_key(registry.target_of(relation), relation.join_columns, relation)
            for metadata in entities
            for relation in metadata.relations_with_join_columns
        ]
        sa.Table(table_name, schema, *columns.values(), *constraints)

    for metadata in registry:
        for relation in metadata.owning_many_to_many:
            _junction_table(schema, registry, metadata, relation)

    return schema


def _column(column: ColumnMetadata, *, force_nullable: bool = False) -> sa.Column[Any]:
    kwargs: dict[str, Any] = {
        "primary_key": column.primary,
        "nullable": (column.nullable or force_nullable) and not column.primary,
        "unique": column.unique or None,
    }
    if column.primary:
        kwargs["autoincrement"] = column.generated == "increment"
    if column.has_default:
        kwargs["server_default"] = _server_default(column)
    return sa.Column(column.db_name, column_type(column), **kwargs)


def _server_default(column: ColumnMetadata) -> Any:
    value = column.default
    if isinstance(value, bool):
        return sa.true() if value else sa.false()
    if isinstance(value, int | float):
        return sa.text(str(value))
    if column.type == ColumnType.json:
        return ValueNormalizer.json_string(value)
    if column.type == ColumnType.simple_array:
        return ValueNormalizer.simple_array_string(value)
    return str(value)


def _referenced(target: EntityMetadata, jc: JoinColumn) -> ColumnMetadata:
    referenced = target.find_column(jc.referenced_column)
    if referenced is None:
        raise MetadataError(
            f"join column {jc.name} references unknown column "
            f"{target.name}.{jc.referenced_column}"
        )
    return referenced


def _foreign_key(
    target: EntityMetadata,
    join_columns: tuple[JoinColumn, ...],
    relation: RelationMetadata | None = None,
    *,
    on_delete: str | None = None,
) -> sa.ForeignKeyConstraint:
    if relation is not None and relation.on_delete != "NO ACTION":
        on_delete = relation.on_delete
    return sa.ForeignKeyConstraint(
        [jc.name for jc in join_columns],
        [f"{target.table_name}.{_referenced(target, jc).db_name}" for jc in join_columns],
        ondelete=on_delete,
    )


def _junction_table(
    schema: sa.MetaData,
    registry: MetadataRegistry,
    owner: EntityMetadata,
    relation: RelationMetadata,
) -> None:
    junction = relation.junction
    assert junction is not None
    target = registry.target_of(relation)

    columns = [
        sa.Column(jc.name, column_type(_referenced(owner, jc)), primary_key=True)
        for jc in junction.join_columns
    ]
    columns += [
        sa.Column(jc.name, column_type(_referenced(target, jc)), primary_key=True)
        for jc in junction.inverse_join_columns
    ]
    sa.Table(
        junction.table_name,
        schema,
        *columns,
        _foreign_key(owner, junction.join_columns, on_delete="CASCADE"),
        _foreign_key(target, junction.inverse_join_columns, on_delete="CASCADE"),
    )


# --- Module Notes -----------------------------------------------------------
# The schema exists for table creation and for the query runner's statement building;
# the persistence pipeline itself never reads it.
