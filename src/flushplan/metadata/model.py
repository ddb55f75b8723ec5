"""
flushplan.metadata.model

Immutable descriptor model for mapped entities.

Responsibilities:
- Describe columns, relations, embedded column groups, junction tables and primary keys.
- Read/write entity values by property path (embedded columns included).
- Reduce related values (entity, id mapping or bare scalar) to primary-key maps.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal


class _Unset:
    # Marks "not provided", which is distinct from an explicit None.
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


class ColumnType(enum.StrEnum):
    string = "string"
    text = "text"
    integer = "integer"
    float = "float"
    boolean = "boolean"
    date = "date"
    time = "time"
    datetime = "datetime"
    json = "json"
    simple_array = "simple-array"
    uuid = "uuid"


class RelationKind(enum.StrEnum):
    many_to_one = "many-to-one"
    one_to_one = "one-to-one"
    one_to_many = "one-to-many"
    many_to_many = "many-to-many"


class Cascade(enum.StrEnum):
    insert = "insert"
    update = "update"
    remove = "remove"


ALL_CASCADES: frozenset[Cascade] = frozenset(Cascade)

OnDelete = Literal["CASCADE", "SET NULL", "RESTRICT", "NO ACTION"]


@dataclass(frozen=True, slots=True, eq=False)
class ColumnMetadata:
    property_name: str
    type: ColumnType = ColumnType.string
    database_name: str | None = None
    nullable: bool = False
    primary: bool = False
    generated: Literal["increment", "uuid"] | None = None
    # UNSET means "no database default".
    default: Any = UNSET
    unique: bool = False
    length: int | None = None
    # Name of the embedded group this column belongs to, if any.
    embedded: str | None = None

    is_virtual: bool = False
    is_discriminator: bool = False
    is_version: bool = False
    is_create_date: bool = False
    is_update_date: bool = False

    @property
    def property_path(self) -> str:
        if self.embedded:
            return f"{self.embedded}.{self.property_name}"
        return self.property_name

    @property
    def db_name(self) -> str:
        if self.database_name:
            return self.database_name
        if self.embedded:
            return f"{self.embedded}_{self.property_name}"
        return self.property_name

    @property
    def has_default(self) -> bool:
        return self.default is not UNSET

    @property
    def is_special(self) -> bool:
        return (
            self.is_virtual
            or self.is_discriminator
            or self.is_version
            or self.is_create_date
            or self.is_update_date
        )

    @property
    def is_required(self) -> bool:
        # A value must be supplied on insert.
        return not (
            self.nullable
            or self.has_default
            or self.generated is not None
            or self.is_special
        )


@dataclass(frozen=True, slots=True)
class JoinColumn:
    # `name` is the physical FK column; `referenced_column` a property path on the target.
    name: str
    referenced_column: str = "id"


@dataclass(frozen=True, slots=True)
class JunctionMetadata:
    table_name: str
    # Columns referencing the owning entity.
    join_columns: tuple[JoinColumn, ...]
    # Columns referencing the related entity.
    inverse_join_columns: tuple[JoinColumn, ...]


@dataclass(frozen=True, slots=True, eq=False)
class RelationMetadata:
    property_name: str
    kind: RelationKind
    target: type
    join_columns: tuple[JoinColumn, ...] = ()
    inverse_side: str | None = None
    nullable: bool = True
    cascade: frozenset[Cascade] = frozenset()
    on_delete: OnDelete = "NO ACTION"
    junction: JunctionMetadata | None = None

    @property
    def is_owning(self) -> bool:
        if self.kind == RelationKind.many_to_many:
            return self.junction is not None
        return bool(self.join_columns)

    @property
    def has_join_columns(self) -> bool:
        return self.kind in (RelationKind.many_to_one, RelationKind.one_to_one) and bool(
            self.join_columns
        )

    @property
    def is_collection(self) -> bool:
        return self.kind in (RelationKind.one_to_many, RelationKind.many_to_many)

    def cascades(self, flag: Cascade) -> bool:
        return flag in self.cascade


@dataclass(frozen=True, slots=True)
class EmbeddedMetadata:
    property_name: str
    # Class instantiated (without arguments) when a value is merged into an absent embed.
    target: type


@dataclass(frozen=True, eq=False)
class EntityMetadata:
    target: type
    table_name: str
    columns: tuple[ColumnMetadata, ...]
    relations: tuple[RelationMetadata, ...] = ()
    embeddeds: tuple[EmbeddedMetadata, ...] = ()
    discriminator_value: str | None = None
    _embeds_by_name: dict[str, EmbeddedMetadata] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self) -> None:
        self._embeds_by_name.update({e.property_name: e for e in self.embeddeds})

    @property
    def name(self) -> str:
        return self.target.__name__

    @property
    def primary_columns(self) -> tuple[ColumnMetadata, ...]:
        return tuple(c for c in self.columns if c.primary)

    @property
    def version_column(self) -> ColumnMetadata | None:
        return next((c for c in self.columns if c.is_version), None)

    @property
    def update_date_column(self) -> ColumnMetadata | None:
        return next((c for c in self.columns if c.is_update_date), None)

    @property
    def create_date_column(self) -> ColumnMetadata | None:
        return next((c for c in self.columns if c.is_create_date), None)

    @property
    def discriminator_column(self) -> ColumnMetadata | None:
        return next((c for c in self.columns if c.is_discriminator), None)

    @property
    def relations_with_join_columns(self) -> tuple[RelationMetadata, ...]:
        return tuple(r for r in self.relations if r.has_join_columns)

    @property
    def owning_many_to_many(self) -> tuple[RelationMetadata, ...]:
        return tuple(
            r for r in self.relations if r.kind == RelationKind.many_to_many and r.is_owning
        )

    def find_column(self, property_path: str) -> ColumnMetadata | None:
        return next((c for c in self.columns if c.property_path == property_path), None)

    def find_relation(self, property_name: str) -> RelationMetadata | None:
        return next((r for r in self.relations if r.property_name == property_name), None)

    def relation_for_column(self, column: ColumnMetadata) -> RelationMetadata | None:
        # A plain column may share its physical name with a relation's join column.
        for relation in self.relations_with_join_columns:
            if any(jc.name == column.db_name for jc in relation.join_columns):
                return relation
        return None

    # -- value access ---------------------------------------------------------

    def get_value(self, entity: Any, column: ColumnMetadata) -> Any:
        holder = entity
        if column.embedded:
            holder = getattr(entity, column.embedded, UNSET)
            if holder is UNSET:
                return UNSET
            if holder is None:
                return None
        return getattr(holder, column.property_name, UNSET)

    def set_value(self, entity: Any, column: ColumnMetadata, value: Any) -> None:
        holder = entity
        if column.embedded:
            holder = getattr(entity, column.embedded, None)
            if holder is None:
                holder = self._embeds_by_name[column.embedded].target()
                setattr(entity, column.embedded, holder)
        setattr(holder, column.property_name, value)

    def get_identifier(self, entity: Any) -> dict[str, Any] | None:
        """
        Primary-key map (property path -> value) or None when any key part is unknown.
        """

        identifier: dict[str, Any] = {}
        for column in self.primary_columns:
            value = self.get_value(entity, column)
            if value is UNSET or value is None:
                return None
            identifier[column.property_path] = value
        return identifier

    def has_identifier(self, entity: Any) -> bool:
        return self.get_identifier(entity) is not None


def relation_id_map(
    relation: RelationMetadata,
    value: Any,
    target: EntityMetadata,
    *,
    join_columns: Iterable[JoinColumn] | None = None,
) -> dict[str, Any] | None:
    """
    Reduce a related value to {referenced property path: value}.

    Accepts a related entity, an id mapping, or a bare scalar (relation-id shortcut; only
    valid for single-column references). Returns None for None or an unidentified entity.
    """

    columns = tuple(join_columns if join_columns is not None else relation.join_columns)
    if not columns:
        columns = tuple(
            JoinColumn(name=c.db_name, referenced_column=c.property_path)
            for c in target.primary_columns
        )
    if value is None or value is UNSET:
        return None
    if isinstance(value, Mapping):
        ids = {jc.referenced_column: value.get(jc.referenced_column) for jc in columns}
    elif isinstance(value, target.target):
        ids = {}
        for jc in columns:
            ref = target.find_column(jc.referenced_column)
            ids[jc.referenced_column] = UNSET if ref is None else target.get_value(value, ref)
    else:
        if len(columns) != 1:
            return None
        ids = {columns[0].referenced_column: value}
    if any(v is None or v is UNSET for v in ids.values()):
        return None
    return ids


# --- Module Notes -----------------------------------------------------------
# Descriptors are plain frozen dataclasses built once at startup; nothing here inspects
# class annotations at runtime.
