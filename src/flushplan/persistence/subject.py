"""
flushplan.persistence.subject

Unit-of-work records and the arena that owns them.

Responsibilities:
- Define `Subject` (entity + intent + snapshot + scheduled changes).
- Define change records (`ColumnChange` / `RelationChange`) and `SubjectRef` placeholders.
- Keep Subjects in an arena indexed by handle, deduplicated by entity identity.
"""

from __future__ import annotations

import enum
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from flushplan.metadata.model import UNSET, ColumnMetadata, EntityMetadata, RelationMetadata


class Intent(enum.StrEnum):
    insert = "insert"
    update = "update"
    remove = "remove"


@dataclass(frozen=True, slots=True)
class SubjectRef:
    # A sibling's future identifier, resolved once that sibling's INSERT has run.
    handle: int


@dataclass(slots=True)
class ColumnChange:
    column: ColumnMetadata
    value: Any


@dataclass(slots=True)
class RelationChange:
    relation: RelationMetadata
    # Related entity, id mapping, bare id scalar, SubjectRef, or None.
    value: Any


ChangeRecord = ColumnChange | RelationChange


@dataclass(slots=True)
class JunctionChange:
    relation: RelationMetadata
    # SubjectRef for a pending sibling, otherwise the related primary-key map.
    value: SubjectRef | dict[str, Any]


@dataclass(slots=True, eq=False)
class Subject:
    handle: int
    metadata: EntityMetadata
    entity: Any
    intent: Intent
    snapshot: dict[str, Any] | None = None

    changes: list[ChangeRecord] = field(default_factory=list)
    diff_columns: list[ColumnMetadata] = field(default_factory=list)
    diff_relations: list[RelationMetadata] = field(default_factory=list)
    # Relation changes held back to break a nullable cycle; written by a follow-up UPDATE.
    deferred: list[RelationChange] = field(default_factory=list)
    # Owner values implied by cascading through an inverse relation, keyed by relation name.
    implied: dict[str, Any] = field(default_factory=dict)
    junction_inserts: list[JunctionChange] = field(default_factory=list)
    junction_removes: list[JunctionChange] = field(default_factory=list)

    # Filled in during execution.
    identifier: dict[str, Any] | None = None
    generated: dict[str, Any] = field(default_factory=dict)
    executed: bool = False

    @property
    def must_be_inserted(self) -> bool:
        return self.intent == Intent.insert

    @property
    def must_be_updated(self) -> bool:
        return self.intent == Intent.update

    @property
    def must_be_removed(self) -> bool:
        return self.intent == Intent.remove

    @property
    def has_changes(self) -> bool:
        return bool(
            self.changes or self.deferred or self.junction_inserts or self.junction_removes
        )

    @property
    def name(self) -> str:
        return self.metadata.name

    def relation_value(self, relation: RelationMetadata) -> Any:
        value = getattr(self.entity, relation.property_name, UNSET)
        if value is UNSET:
            return self.implied.get(relation.property_name, UNSET)
        return value

    def find_change(self, target: ColumnMetadata | RelationMetadata) -> ChangeRecord | None:
        for change in self.changes:
            if isinstance(change, ColumnChange) and change.column is target:
                return change
            if isinstance(change, RelationChange) and change.relation is target:
                return change
        return None

    def upsert_column_change(self, column: ColumnMetadata, value: Any) -> None:
        existing = self.find_change(column)
        if existing is not None:
            existing.value = value
        else:
            self.changes.append(ColumnChange(column=column, value=value))

    def upsert_relation_change(self, relation: RelationMetadata, value: Any) -> None:
        existing = self.find_change(relation)
        if existing is not None:
            existing.value = value
        else:
            self.changes.append(RelationChange(relation=relation, value=value))

    def defer(self, change: RelationChange) -> None:
        self.changes.remove(change)
        self.deferred.append(change)

    def __repr__(self) -> str:
        return f"Subject(#{self.handle} {self.intent} {self.name})"


class SubjectArena:
    """
    Ordered store of Subjects. Handles are list indices (submission order); a side table
    keyed by `id(entity)` maps each in-memory instance to exactly one handle.
    """

    def __init__(self) -> None:
        self._subjects: list[Subject] = []
        self._by_identity: dict[int, int] = {}

    def __iter__(self) -> Iterator[Subject]:
        return iter(self._subjects)

    def __len__(self) -> int:
        return len(self._subjects)

    def __getitem__(self, handle: int) -> Subject:
        return self._subjects[handle]

    def add(self, *, metadata: EntityMetadata, entity: Any, intent: Intent) -> Subject:
        if id(entity) in self._by_identity:
            raise ValueError(f"{metadata.name} instance already has a subject")
        subject = Subject(
            handle=len(self._subjects), metadata=metadata, entity=entity, intent=intent
        )
        self._subjects.append(subject)
        # The arena holds the entity, so its id() stays unique for the arena's lifetime.
        self._by_identity[id(entity)] = subject.handle
        return subject

    def find(self, entity: Any) -> Subject | None:
        handle = self._by_identity.get(id(entity))
        return None if handle is None else self._subjects[handle]

    def find_pending_insert(self, entity: Any) -> Subject | None:
        subject = self.find(entity)
        if subject is not None and subject.must_be_inserted:
            return subject
        return None

    def with_intent(self, intent: Intent) -> list[Subject]:
        return [s for s in self._subjects if s.intent == intent]


# --- Module Notes -----------------------------------------------------------
# Subjects are created by `builder`, annotated by `changes`, linearized by `orderer` and
# consumed by `executor`; the arena is discarded once the batch finishes.
