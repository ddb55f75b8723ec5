"""
flushplan.persistence.changes

Change detection between in-memory entities and their stored snapshots.

Responsibilities:
- Diff ordinary columns (after type-aware normalization) into `ColumnChange`s.
- Diff owning relations by primary-key map into `RelationChange`s.
- Replace references to pending-insert siblings with `SubjectRef` placeholders.
- Diff owning many-to-many collections into junction additions/removals.
"""

from __future__ import annotations

from typing import Any

from flushplan.metadata.model import (
    UNSET,
    EntityMetadata,
    RelationMetadata,
    relation_id_map,
)
from flushplan.metadata.registry import MetadataRegistry
from flushplan.observability.logging import get_logger
from flushplan.persistence.normalizer import ValueNormalizer
from flushplan.persistence.subject import (
    JunctionChange,
    Subject,
    SubjectArena,
    SubjectRef,
)

log = get_logger(__name__)


class ChangeComputer:
    def __init__(
        self, registry: MetadataRegistry, normalizer: ValueNormalizer | None = None
    ) -> None:
        self._registry = registry
        self._normalizer = normalizer or ValueNormalizer()

    def compute(self, subjects: SubjectArena) -> None:
        """
        Annotate every insert/update Subject in place. Never raises for data problems:
        structural validation already happened in the builder.
        """

        for subject in subjects:
            if subject.must_be_removed:
                continue
            self._compute_columns(subject)
            self._compute_relations(subjects, subject)
            self._compute_junctions(subjects, subject)
            log.debug(
                "changes.computed",
                entity=subject.name,
                intent=str(subject.intent),
                columns=[c.property_path for c in subject.diff_columns],
                relations=[r.property_name for r in subject.diff_relations],
            )

    def _compute_columns(self, subject: Subject) -> None:
        metadata = subject.metadata
        for column in metadata.columns:
            if column.is_special:
                continue

            value = metadata.get_value(subject.entity, column)
            # Absent means "leave alone"; an explicit None is a real change.
            if value is UNSET:
                continue

            # The relation's own diff owns this physical column when it carries a value.
            relation = metadata.relation_for_column(column)
            if relation is not None:
                related = subject.relation_value(relation)
                if related is not None and related is not UNSET:
                    continue

            if subject.snapshot is not None:
                stored = subject.snapshot.get(column.property_path)
                if self._normalizer.equal(column, value, stored):
                    continue

            subject.diff_columns.append(column)
            subject.upsert_column_change(column, value)

    def _compute_relations(self, subjects: SubjectArena, subject: Subject) -> None:
        for relation in subject.metadata.relations_with_join_columns:
            value = subject.relation_value(relation)
            if value is UNSET:
                continue

            if subject.snapshot is not None:
                target = self._registry.target_of(relation)
                if not self._relation_changed(relation, target, value, subject.snapshot):
                    continue
                subject.diff_relations.append(relation)

            if self._registry.is_entity(value):
                sibling = subjects.find_pending_insert(value)
                if sibling is not None:
                    value = SubjectRef(sibling.handle)

            subject.upsert_relation_change(relation, value)

    def _relation_changed(
        self,
        relation: RelationMetadata,
        target: EntityMetadata,
        value: Any,
        snapshot: dict[str, Any],
    ) -> bool:
        current = relation_id_map(relation, value, target)
        if current is None and value is not None:
            # An entity that has no id yet is always a new reference.
            return True
        stored = snapshot.get(relation.property_name)
        return not self._normalizer.ids_equal(target, current, stored)

    def _compute_junctions(self, subjects: SubjectArena, subject: Subject) -> None:
        for relation in subject.metadata.owning_many_to_many:
            items = getattr(subject.entity, relation.property_name, UNSET)
            if items is UNSET:
                continue
            items = list(items or [])
            target = self._registry.target_of(relation)
            inverse_columns = relation.junction.inverse_join_columns  # type: ignore[union-attr]
            stored: list[dict[str, Any]] = []
            if subject.snapshot is not None:
                stored = list(subject.snapshot.get(relation.property_name) or [])

            kept: list[dict[str, Any]] = []
            for item in items:
                ids = relation_id_map(relation, item, target, join_columns=inverse_columns)
                sibling = None
                if self._registry.is_entity(item):
                    sibling = subjects.find_pending_insert(item)
                if sibling is not None:
                    subject.junction_inserts.append(
                        JunctionChange(relation=relation, value=SubjectRef(sibling.handle))
                    )
                    continue
                if ids is None:
                    continue
                kept.append(ids)
                if not any(self._normalizer.ids_equal(target, ids, s) for s in stored):
                    subject.junction_inserts.append(JunctionChange(relation=relation, value=ids))

            for ids in stored:
                if not any(self._normalizer.ids_equal(target, ids, k) for k in kept):
                    subject.junction_removes.append(JunctionChange(relation=relation, value=ids))


# --- Module Notes -----------------------------------------------------------
# Version/create-date/update-date columns never produce changes here; the executor
# manages them as part of the statement it builds.
