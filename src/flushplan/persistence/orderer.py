"""
flushplan.persistence.orderer

Dependency ordering of Subjects.

Responsibilities:
- Stable topological sort of inserts along owning foreign-key edges.
- Break cycles that contain a nullable edge by deferring that edge to a follow-up UPDATE.
- Produce delete order (dependents first) with the same edge direction, reversed.
- Reject cycles built only from non-nullable edges (`CycleError`).
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field

from flushplan.metadata.model import RelationMetadata, relation_id_map
from flushplan.metadata.registry import MetadataRegistry
from flushplan.observability.logging import get_logger
from flushplan.persistence.errors import CycleError
from flushplan.persistence.normalizer import ValueNormalizer
from flushplan.persistence.subject import (
    Intent,
    RelationChange,
    Subject,
    SubjectArena,
    SubjectRef,
)

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class _Edge:
    # `source` depends on `target`: target's row must exist first.
    source: int
    target: int
    relation: RelationMetadata
    change: RelationChange | None = None

    @property
    def nullable(self) -> bool:
        return self.relation.nullable


@dataclass(slots=True)
class PersistPlan:
    arena: SubjectArena = field(default_factory=SubjectArena)
    inserts: list[Subject] = field(default_factory=list)
    # Inserted Subjects whose cyclic foreign keys are written after the insert phase.
    deferred: list[Subject] = field(default_factory=list)
    updates: list[Subject] = field(default_factory=list)
    # Removed Subjects whose cyclic foreign keys are nulled before any DELETE.
    detach: list[Subject] = field(default_factory=list)
    removes: list[Subject] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.inserts) + len(self.updates) + len(self.removes)


class DependencyOrderer:
    def __init__(
        self, registry: MetadataRegistry, normalizer: ValueNormalizer | None = None
    ) -> None:
        self._registry = registry
        self._normalizer = normalizer or ValueNormalizer()

    def order(self, arena: SubjectArena) -> PersistPlan:
        plan = PersistPlan(arena=arena)

        inserts = arena.with_intent(Intent.insert)
        plan.inserts = self._sort(inserts, self._insert_edges(inserts), defer_insert=True)
        plan.deferred = [s for s in plan.inserts if s.deferred]

        plan.updates = [s for s in arena.with_intent(Intent.update) if s.has_changes]

        removes = arena.with_intent(Intent.remove)
        ordered = self._sort(removes, self._remove_edges(removes), defer_insert=False)
        plan.removes = list(reversed(ordered))
        plan.detach = [s for s in plan.removes if s.deferred]

        log.debug(
            "orderer.planned",
            inserts=[repr(s) for s in plan.inserts],
            deferred=[repr(s) for s in plan.deferred],
            updates=len(plan.updates),
            removes=[repr(s) for s in plan.removes],
        )
        return plan

    def _insert_edges(self, subjects: list[Subject]) -> list[_Edge]:
        handles = {s.handle for s in subjects}
        edges: list[_Edge] = []
        for subject in subjects:
            for change in subject.changes:
                if not isinstance(change, RelationChange):
                    continue
                if isinstance(change.value, SubjectRef) and change.value.handle in handles:
                    edges.append(
                        _Edge(
                            source=subject.handle,
                            target=change.value.handle,
                            relation=change.relation,
                            change=change,
                        )
                    )
        return edges

    def _remove_edges(self, subjects: list[Subject]) -> list[_Edge]:
        edges: list[_Edge] = []
        for subject in subjects:
            if subject.snapshot is None:
                continue
            for relation in subject.metadata.relations_with_join_columns:
                stored = subject.snapshot.get(relation.property_name)
                if stored is None:
                    continue
                target_metadata = self._registry.target_of(relation)
                for other in subjects:
                    if other is subject or not issubclass(
                        other.metadata.target, target_metadata.target
                    ):
                        continue
                    ids = relation_id_map(relation, other.entity, target_metadata)
                    if ids is not None and self._normalizer.ids_equal(
                        target_metadata, ids, stored
                    ):
                        edges.append(
                            _Edge(source=subject.handle, target=other.handle, relation=relation)
                        )
        return edges

    def _sort(
        self, subjects: list[Subject], edges: list[_Edge], *, defer_insert: bool
    ) -> list[Subject]:
        """
        Kahn's algorithm; among ready Subjects the lowest handle (submission order) wins.

        When nothing is ready the pending edges are split into strongly connected
        components. Only a Subject on a cycle can break it, and only the edges it has
        inside its own component are deferred.
        """

        by_handle = {s.handle: s for s in subjects}
        outgoing: dict[int, list[_Edge]] = {h: [] for h in by_handle}
        for edge in edges:
            outgoing[edge.source].append(edge)

        remaining = sorted(by_handle)
        done: set[int] = set()
        ordered: list[Subject] = []

        while remaining:
            ready = next(
                (h for h in remaining if all(e.target in done for e in outgoing[h])), None
            )
            if ready is not None:
                remaining.remove(ready)
                done.add(ready)
                ordered.append(by_handle[ready])
                continue

            component = _cyclic_components(remaining, outgoing, done)
            breaker = next(
                (
                    h
                    for h in remaining
                    if h in component
                    and all(
                        e.nullable for e in outgoing[h] if component.get(e.target) == component[h]
                    )
                ),
                None,
            )
            if breaker is None:
                raise self._cycle_error(by_handle, outgoing, remaining, component)

            subject = by_handle[breaker]
            cut = [e for e in outgoing[breaker] if component.get(e.target) == component[breaker]]
            for edge in cut:
                if defer_insert and edge.change is not None:
                    subject.defer(edge.change)
                elif not defer_insert:
                    subject.deferred.append(RelationChange(relation=edge.relation, value=None))
                log.debug(
                    "orderer.edge_deferred",
                    entity=subject.name,
                    relation=edge.relation.property_name,
                    target=repr(by_handle[edge.target]),
                )
            outgoing[breaker] = [
                e for e in outgoing[breaker] if component.get(e.target) != component[breaker]
            ]

        return ordered

    @staticmethod
    def _cycle_error(
        by_handle: dict[int, Subject],
        outgoing: dict[int, list[_Edge]],
        remaining: list[int],
        component: dict[int, int],
    ) -> CycleError:
        # Every cycle member has a non-nullable edge inside its component, so following
        # those edges from any member loops.
        path: list[int] = []
        node = next(h for h in remaining if h in component)
        while node not in path:
            path.append(node)
            node = next(
                e.target
                for e in outgoing[node]
                if not e.nullable and component.get(e.target) == component[node]
            )
        cycle = path[path.index(node):]
        names = [f"{by_handle[h].name}#{h}" for h in cycle]
        return CycleError(
            "cannot order subjects, non-nullable relations form a cycle: "
            + " -> ".join([*names, names[0]]),
            members=names,
            entity_name=by_handle[cycle[0]].name,
        )


def _cyclic_components(
    remaining: list[int], outgoing: dict[int, list[_Edge]], done: set[int]
) -> dict[int, int]:
    """
    Tarjan's algorithm over the pending edges, iterative so long dependency chains do
    not hit the recursion limit. Returns handle -> component index for Subjects that sit
    on a cycle (a component of two or more, or a self-reference).
    """

    index: dict[int, int] = {}
    low: dict[int, int] = {}
    stack: list[int] = []
    on_stack: set[int] = set()
    result: dict[int, int] = {}
    counter = itertools.count()

    for root in remaining:
        if root in index:
            continue
        index[root] = low[root] = next(counter)
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(outgoing[root]))]
        while work:
            node, pending = work[-1]
            edge = next((e for e in pending if e.target not in done), None)
            if edge is not None:
                target = edge.target
                if target not in index:
                    index[target] = low[target] = next(counter)
                    stack.append(target)
                    on_stack.add(target)
                    work.append((target, iter(outgoing[target])))
                elif target in on_stack:
                    low[node] = min(low[node], index[target])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])
            if low[node] != index[node]:
                continue
            members: list[int] = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                members.append(member)
                if member == node:
                    break
            looped = any(e.target == node for e in outgoing[node])
            if len(members) > 1 or looped:
                for member in members:
                    result[member] = index[node]
    return result


# --- Module Notes -----------------------------------------------------------
# The scan is quadratic in batch size, which keeps it simple and deterministic; batches
# are small compared to the statement round-trips they produce.
