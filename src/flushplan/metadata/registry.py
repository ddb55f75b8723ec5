"""
flushplan.metadata.registry

Lookup and startup validation for the descriptor model.

Responsibilities:
- Resolve entity classes (and instances) to their `EntityMetadata`.
- Validate the model once: primary keys, relation targets, join/junction columns.
- Reject schemas whose non-nullable owning relations form a cycle.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from flushplan.metadata.model import EntityMetadata, RelationKind, RelationMetadata
from flushplan.persistence.errors import CycleError, MetadataError


class MetadataRegistry:
    def __init__(self, entities: Iterable[EntityMetadata], *, validate: bool = True) -> None:
        self._by_target: dict[type, EntityMetadata] = {}
        for metadata in entities:
            if metadata.target in self._by_target:
                raise MetadataError(f"entity {metadata.name} registered twice")
            self._by_target[metadata.target] = metadata
        if validate:
            self.validate()

    def __iter__(self) -> Iterator[EntityMetadata]:
        return iter(self._by_target.values())

    def __len__(self) -> int:
        return len(self._by_target)

    def get(self, target: type) -> EntityMetadata:
        # Walk the MRO so subclasses of a mapped class resolve to it.
        for cls in target.__mro__:
            metadata = self._by_target.get(cls)
            if metadata is not None:
                return metadata
        raise MetadataError(f"no metadata registered for {target.__name__}")

    def for_entity(self, entity: Any) -> EntityMetadata:
        return self.get(type(entity))

    def is_entity(self, value: Any) -> bool:
        return any(cls in self._by_target for cls in type(value).__mro__)

    def target_of(self, relation: RelationMetadata) -> EntityMetadata:
        return self.get(relation.target)

    def validate(self) -> None:
        for metadata in self:
            if not metadata.primary_columns:
                raise MetadataError(f"entity {metadata.name} has no primary column")
            if sum(1 for c in metadata.columns if c.is_version) > 1:
                raise MetadataError(f"entity {metadata.name} declares more than one version column")
            embeds = {e.property_name for e in metadata.embeddeds}
            for column in metadata.columns:
                if column.embedded and column.embedded not in embeds:
                    raise MetadataError(
                        f"{metadata.name}.{column.property_name} uses unknown embed "
                        f"{column.embedded}"
                    )
            for relation in metadata.relations:
                self._validate_relation(metadata, relation)
        self._check_required_cycles()

    def _validate_relation(self, owner: EntityMetadata, relation: RelationMetadata) -> None:
        where = f"{owner.name}.{relation.property_name}"
        if relation.target not in self._by_target:
            raise MetadataError(f"{where} targets unregistered entity {relation.target.__name__}")
        target = self._by_target[relation.target]

        if relation.kind == RelationKind.one_to_many and relation.join_columns:
            raise MetadataError(f"{where}: one-to-many relations cannot own join columns")
        if relation.kind == RelationKind.many_to_many and relation.join_columns:
            raise MetadataError(f"{where}: many-to-many relations use a junction table")
        if relation.kind == RelationKind.many_to_one and not relation.join_columns:
            raise MetadataError(f"{where}: many-to-one relations need join columns")
        if relation.junction is not None:
            for jc in relation.junction.join_columns:
                if owner.find_column(jc.referenced_column) is None:
                    raise MetadataError(
                        f"{where}: junction references unknown {jc.referenced_column}"
                    )
            for jc in relation.junction.inverse_join_columns:
                if target.find_column(jc.referenced_column) is None:
                    raise MetadataError(
                        f"{where}: junction references unknown {jc.referenced_column}"
                    )
        for jc in relation.join_columns:
            if target.find_column(jc.referenced_column) is None:
                raise MetadataError(
                    f"{where}: join column {jc.name} references unknown {jc.referenced_column}"
                )
        if not relation.is_owning and relation.inverse_side is not None:
            inverse = target.find_relation(relation.inverse_side)
            if inverse is None:
                raise MetadataError(f"{where}: inverse side {relation.inverse_side} not found")

    def _check_required_cycles(self) -> None:
        # Depth-first walk over non-nullable owning edges; a back edge is an unresolvable cycle.
        edges: dict[type, list[type]] = {
            m.target: [
                r.target
                for r in m.relations_with_join_columns
                if not r.nullable and r.target is not m.target
            ]
            for m in self
        }
        for m in self:
            for r in m.relations_with_join_columns:
                if not r.nullable and r.target is m.target:
                    raise CycleError(
                        f"{m.name}.{r.property_name} is a non-nullable self reference",
                        members=[m.name],
                    )

        visiting: list[type] = []
        done: set[type] = set()

        def visit(node: type) -> None:
            if node in done:
                return
            if node in visiting:
                cycle = visiting[visiting.index(node):]
                names = [c.__name__ for c in cycle]
                raise CycleError(
                    "non-nullable relations form a cycle: " + " -> ".join([*names, names[0]]),
                    members=names,
                )
            visiting.append(node)
            for nxt in edges.get(node, []):
                visit(nxt)
            visiting.pop()
            done.add(node)

        for target in edges:
            visit(target)


# --- Module Notes -----------------------------------------------------------
# The registry is built once at startup and shared read-only by every EntityManager.
