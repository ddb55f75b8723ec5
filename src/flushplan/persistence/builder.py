"""
flushplan.persistence.builder

Subject graph construction.

Responsibilities:
- Create one Subject per distinct entity instance reachable through cascade-enabled relations.
- Decide each Subject's intent (insert/update/remove) and load its stored snapshot.
- Validate required values and unresolved references before any statement runs.
"""

from __future__ import annotations

import enum
from collections import deque
from collections.abc import Iterable, Sequence
from typing import Any

from flushplan.metadata.model import (
    UNSET,
    Cascade,
    EntityMetadata,
    RelationKind,
    RelationMetadata,
)
from flushplan.metadata.registry import MetadataRegistry
from flushplan.observability.logging import get_logger
from flushplan.persistence.errors import ValidationError
from flushplan.persistence.protocols import SnapshotLoader
from flushplan.persistence.subject import Intent, Subject, SubjectArena

log = get_logger(__name__)


class Operation(enum.StrEnum):
    insert = "insert"
    update = "update"
    upsert = "upsert"
    remove = "remove"


class SubjectGraphBuilder:
    def __init__(self, registry: MetadataRegistry, loader: SnapshotLoader) -> None:
        self._registry = registry
        self._loader = loader

    async def build(self, entities: Sequence[Any], operation: Operation) -> SubjectArena:
        arena = SubjectArena()
        pending: deque[Subject] = deque()

        for entity in entities:
            if arena.find(entity) is not None:
                continue
            metadata = self._registry.for_entity(entity)
            subject = await self._create(arena, metadata, entity, operation)
            pending.append(subject)

        # Breadth-first so handles follow submission order, then discovery order.
        while pending:
            subject = pending.popleft()
            for relation, related in self._cascade_targets(subject):
                child = arena.find(related)
                if child is None:
                    child = await self._create_cascaded(arena, subject, relation, related)
                    if child is None:
                        continue
                    pending.append(child)
                self._imply_owner(subject, relation, child)

        self._validate(arena)
        log.debug(
            "builder.built",
            operation=str(operation),
            subjects=len(arena),
            inserts=len(arena.with_intent(Intent.insert)),
            updates=len(arena.with_intent(Intent.update)),
            removes=len(arena.with_intent(Intent.remove)),
        )
        return arena

    async def _create(
        self,
        arena: SubjectArena,
        metadata: EntityMetadata,
        entity: Any,
        operation: Operation,
    ) -> Subject:
        identifier = metadata.get_identifier(entity)

        if operation == Operation.remove:
            if identifier is None:
                raise ValidationError(
                    "cannot remove an entity without a primary key",
                    entity_name=metadata.name,
                    operation="remove",
                )
            subject = arena.add(metadata=metadata, entity=entity, intent=Intent.remove)
            subject.snapshot = await self._loader.load(metadata, identifier)
            subject.identifier = identifier
            return subject

        if operation == Operation.insert:
            return arena.add(metadata=metadata, entity=entity, intent=Intent.insert)

        snapshot = None
        if identifier is not None:
            snapshot = await self._loader.load(metadata, identifier)

        if operation == Operation.update and snapshot is None:
            raise ValidationError(
                "cannot update an entity that is not stored",
                entity_name=metadata.name,
                operation="update",
            )

        intent = Intent.update if snapshot is not None else Intent.insert
        subject = arena.add(metadata=metadata, entity=entity, intent=intent)
        subject.snapshot = snapshot
        if snapshot is not None:
            subject.identifier = identifier
        return subject

    async def _create_cascaded(
        self,
        arena: SubjectArena,
        owner: Subject,
        relation: RelationMetadata,
        related: Any,
    ) -> Subject | None:
        metadata = self._registry.for_entity(related)

        if owner.must_be_removed:
            return await self._create(arena, metadata, related, Operation.remove)

        identifier = metadata.get_identifier(related)
        snapshot = None
        if identifier is not None:
            snapshot = await self._loader.load(metadata, identifier)

        if snapshot is None and not relation.cascades(Cascade.insert):
            return None
        if snapshot is not None and not relation.cascades(Cascade.update):
            return None

        intent = Intent.update if snapshot is not None else Intent.insert
        subject = arena.add(metadata=metadata, entity=related, intent=intent)
        subject.snapshot = snapshot
        if snapshot is not None:
            subject.identifier = identifier
        return subject

    def _cascade_targets(self, subject: Subject) -> Iterable[tuple[RelationMetadata, Any]]:
        if subject.must_be_removed:
            flags = {Cascade.remove}
        else:
            flags = {Cascade.insert, Cascade.update}

        for relation in subject.metadata.relations:
            if not flags & relation.cascade:
                continue
            value = getattr(subject.entity, relation.property_name, UNSET)
            if value is UNSET or value is None:
                continue
            items = list(value) if relation.is_collection else [value]
            for item in items:
                # Bare ids and id mappings are references, never cascade targets.
                if self._registry.is_entity(item):
                    yield relation, item

    def _imply_owner(self, owner: Subject, relation: RelationMetadata, child: Subject) -> None:
        # Cascading through an inverse relation tells the child which row it belongs to.
        if relation.is_owning or relation.inverse_side is None or owner.must_be_removed:
            return
        if relation.kind not in (RelationKind.one_to_many, RelationKind.one_to_one):
            return
        inverse = child.metadata.find_relation(relation.inverse_side)
        if inverse is None or not inverse.has_join_columns:
            return
        if getattr(child.entity, inverse.property_name, UNSET) is UNSET:
            child.implied.setdefault(inverse.property_name, owner.entity)

    # -- validation --------------------------------------------------------------

    def _validate(self, arena: SubjectArena) -> None:
        for subject in arena:
            if subject.must_be_inserted:
                self._validate_required(subject)
            if not subject.must_be_removed:
                self._validate_references(arena, subject)

    def _validate_required(self, subject: Subject) -> None:
        metadata = subject.metadata
        for column in metadata.columns:
            if not column.is_required:
                continue
            value = metadata.get_value(subject.entity, column)
            if value is not UNSET and value is not None:
                continue
            relation = metadata.relation_for_column(column)
            if relation is not None and _provided(subject.relation_value(relation)):
                continue
            raise ValidationError(
                f"required column {column.property_path} has no value",
                entity_name=metadata.name,
                operation="insert",
            )

        for relation in metadata.relations_with_join_columns:
            if relation.nullable or _provided(subject.relation_value(relation)):
                continue
            backing = [
                c
                for c in metadata.columns
                if any(jc.name == c.db_name for jc in relation.join_columns)
            ]
            if backing and all(_provided(metadata.get_value(subject.entity, c)) for c in backing):
                continue
            raise ValidationError(
                f"required relation {relation.property_name} has no value",
                entity_name=metadata.name,
                operation="insert",
            )

    def _validate_references(self, arena: SubjectArena, subject: Subject) -> None:
        metadata = subject.metadata
        for relation in metadata.relations:
            if not relation.is_owning:
                continue
            if relation.has_join_columns:
                value = subject.relation_value(relation)
                values = [] if not _provided(value) else [value]
            else:
                value = getattr(subject.entity, relation.property_name, UNSET)
                values = list(value) if _provided(value) else []

            target = self._registry.target_of(relation)
            for item in values:
                if self._registry.is_entity(item):
                    if target.has_identifier(item) or arena.find_pending_insert(item) is not None:
                        continue
                    raise ValidationError(
                        f"{relation.property_name} references an unsaved {target.name}; "
                        "enable insert cascade on the relation or save it first",
                        entity_name=metadata.name,
                        operation=str(subject.intent),
                    )
                if not isinstance(item, dict) and len(relation.join_columns) > 1:
                    raise ValidationError(
                        f"{relation.property_name} uses a composite key; a bare id is ambiguous",
                        entity_name=metadata.name,
                        operation=str(subject.intent),
                    )


def _provided(value: Any) -> bool:
    return value is not UNSET and value is not None


# --- Module Notes -----------------------------------------------------------
# A Subject reached through two relation paths is created once: `SubjectArena.find`
# is checked before every cascade step.
