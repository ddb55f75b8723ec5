"""
flushplan.persistence.executor

Statement execution for an ordered persistence plan.

Responsibilities:
- Own the transaction (unless the runner already has an outer one) and roll back on failure.
- Issue INSERT/UPDATE/DELETE through the `QueryRunner` in plan order.
- Resolve `SubjectRef` placeholders once the referenced sibling has been inserted.
- Enforce optimistic locking on version / update-date columns.
- Merge generated values into the caller's entities after the batch succeeded.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from flushplan.metadata.model import (
    UNSET,
    ColumnMetadata,
    EntityMetadata,
    JoinColumn,
    RelationMetadata,
    relation_id_map,
)
from flushplan.metadata.registry import MetadataRegistry
from flushplan.observability.logging import get_logger
from flushplan.persistence.broadcaster import (
    LifecycleBroadcaster,
    LifecycleContext,
    LifecycleEvent,
)
from flushplan.persistence.errors import OptimisticLockError, PersistenceError
from flushplan.persistence.normalizer import ValueNormalizer
from flushplan.persistence.orderer import PersistPlan
from flushplan.persistence.protocols import QueryRunner, SqlExpression
from flushplan.persistence.subject import (
    ColumnChange,
    JunctionChange,
    RelationChange,
    Subject,
    SubjectArena,
    SubjectRef,
)

log = get_logger(__name__)


def _utcnow() -> datetime:
    # Timestamps are written as naive UTC, matching how datetime columns are normalized.
    return datetime.now(tz=UTC).replace(tzinfo=None)


class PersistExecutor:
    def __init__(
        self,
        *,
        runner: QueryRunner,
        registry: MetadataRegistry,
        broadcaster: LifecycleBroadcaster | None = None,
        normalizer: ValueNormalizer | None = None,
        listeners: bool = True,
    ) -> None:
        self._runner = runner
        self._registry = registry
        self._broadcaster = broadcaster if listeners else None
        self._normalizer = normalizer or ValueNormalizer()
        self._arena = SubjectArena()

    async def execute(self, plan: PersistPlan) -> None:
        self._arena = plan.arena
        self._check_versions(plan)

        owns_transaction = not self._runner.is_transaction_active
        if owns_transaction:
            await self._runner.start_transaction()

        try:
            for subject in plan.inserts:
                await self._insert(subject)
            for subject in plan.deferred:
                await self._write_deferred(subject)
            for subject in plan.updates:
                await self._update(subject)
            for subject in [*plan.inserts, *plan.updates]:
                await self._write_junctions(subject)
            for subject in plan.detach:
                await self._write_deferred(subject)
            for subject in plan.removes:
                await self._remove(subject)

            if owns_transaction:
                await self._runner.commit_transaction()
        except Exception as e:
            log.warning(
                "executor.failed",
                error=str(e),
                error_type=type(e).__name__,
                owns_transaction=owns_transaction,
            )
            if owns_transaction:
                await self._runner.rollback_transaction()
            raise

        self._merge(plan)

    # -- pre-flight ---------------------------------------------------------------

    def _check_versions(self, plan: PersistPlan) -> None:
        """
        A stale in-memory version (or update date) fails before any statement is issued.
        """

        for subject in plan.updates:
            column = subject.metadata.version_column or subject.metadata.update_date_column
            if column is None or subject.snapshot is None:
                continue
            current = subject.metadata.get_value(subject.entity, column)
            if current is UNSET or current is None:
                continue
            stored = subject.snapshot.get(column.property_path)
            if not self._normalizer.equal(column, current, stored):
                raise OptimisticLockError(
                    f"{column.property_path} is {current!r} in memory but {stored!r} in storage",
                    expected=current,
                    actual=stored,
                    entity_name=subject.name,
                    operation="update",
                )

    # -- statements -----------------------------------------------------------------

    async def _insert(self, subject: Subject) -> None:
        metadata = subject.metadata
        values = self._changed_values(subject)

        for column in metadata.primary_columns:
            if column.generated == "uuid" and values.get(column.db_name) is None:
                generated = uuid.uuid4()
                values[column.db_name] = self._normalizer.to_database(column, generated)
                subject.generated[column.property_path] = generated
        for change in subject.deferred:
            for jc in change.relation.join_columns:
                values[jc.name] = None
        if metadata.discriminator_column is not None and metadata.discriminator_value:
            values[metadata.discriminator_column.db_name] = metadata.discriminator_value
        if metadata.version_column is not None:
            values[metadata.version_column.db_name] = 1
        now = _utcnow()
        for column in (metadata.create_date_column, metadata.update_date_column):
            if column is not None:
                values[column.db_name] = now

        returning = [
            c.db_name
            for c in metadata.columns
            if not c.is_virtual and (c.primary or c.db_name not in values)
        ]

        await self._broadcast(LifecycleEvent.before_insert, subject, values)
        returned = await self._guard(
            subject,
            "insert",
            self._runner.insert(metadata.table_name, values, returning=returning),
        )

        for column in metadata.columns:
            if column.is_virtual:
                continue
            if column.db_name in returned:
                subject.generated[column.property_path] = self._normalizer.from_database(
                    column, returned[column.db_name]
                )
            elif column.db_name in values and (column.is_special or column.generated):
                subject.generated[column.property_path] = self._normalizer.from_database(
                    column, values[column.db_name]
                )
        subject.identifier = {
            c.property_path: self._subject_value(subject, c) for c in metadata.primary_columns
        }
        subject.executed = True
        log.debug("executor.inserted", entity=subject.name, identifier=subject.identifier)
        await self._broadcast(LifecycleEvent.after_insert, subject, values)

    async def _update(self, subject: Subject) -> None:
        metadata = subject.metadata
        values = self._changed_values(subject)
        if not values:
            # Junction-only changes: no row update.
            subject.executed = True
            return

        where = self._primary_where(subject)
        returning: list[str] = []
        version = metadata.version_column
        update_date = metadata.update_date_column
        snapshot = subject.snapshot or {}
        if version is not None:
            values[version.db_name] = SqlExpression.INCREMENT
            where[version.db_name] = snapshot.get(version.property_path)
            returning.append(version.db_name)
        if update_date is not None:
            values[update_date.db_name] = _utcnow()
            if version is None:
                where[update_date.db_name] = self._normalizer.to_database(
                    update_date, snapshot.get(update_date.property_path)
                )
            returning.append(update_date.db_name)

        await self._broadcast(LifecycleEvent.before_update, subject, values)
        result = await self._guard(
            subject,
            "update",
            self._runner.update(metadata.table_name, values, where, returning=returning),
        )
        if result.affected == 0:
            lock = version or update_date
            if lock is not None:
                raise OptimisticLockError(
                    "row was changed or removed since it was loaded",
                    expected=snapshot.get(lock.property_path),
                    entity_name=subject.name,
                    operation="update",
                )
            raise PersistenceError(
                "update matched no row", entity_name=subject.name, operation="update"
            )

        for column in (version, update_date):
            if column is None:
                continue
            if column.db_name in result.returned:
                value = result.returned[column.db_name]
            elif column is version:
                value = (snapshot.get(column.property_path) or 0) + 1
            else:
                value = values[column.db_name]
            subject.generated[column.property_path] = self._normalizer.from_database(column, value)
        subject.executed = True
        log.debug("executor.updated", entity=subject.name, columns=sorted(values))
        await self._broadcast(LifecycleEvent.after_update, subject, values)

    async def _write_deferred(self, subject: Subject) -> None:
        # Second pass of a broken cycle: fill in (or, before deletes, clear) the held-back FKs.
        values: dict[str, Any] = {}
        for change in subject.deferred:
            values.update(self._relation_values(change.relation, change.value))
        await self._guard(
            subject,
            "update",
            self._runner.update(
                subject.metadata.table_name, values, self._primary_where(subject)
            ),
        )
        log.debug(
            "executor.deferred_written",
            entity=subject.name,
            relations=[c.relation.property_name for c in subject.deferred],
        )

    async def _remove(self, subject: Subject) -> None:
        metadata = subject.metadata
        where = self._primary_where(subject)
        await self._broadcast(LifecycleEvent.before_remove, subject, {})
        for relation in metadata.owning_many_to_many:
            junction = relation.junction
            assert junction is not None
            await self._guard(
                subject,
                "remove",
                self._runner.delete(
                    junction.table_name,
                    self._owner_junction_values(subject, junction.join_columns),
                ),
            )
        await self._guard(subject, "remove", self._runner.delete(metadata.table_name, where))
        subject.executed = True
        log.debug("executor.removed", entity=subject.name, identifier=subject.identifier)
        await self._broadcast(LifecycleEvent.after_remove, subject, {})

    async def _write_junctions(self, subject: Subject) -> None:
        for change in subject.junction_inserts:
            table = change.relation.junction.table_name  # type: ignore[union-attr]
            row = self._junction_row(subject, change)
            await self._guard(subject, "update", self._runner.insert(table, row))
        for change in subject.junction_removes:
            table = change.relation.junction.table_name  # type: ignore[union-attr]
            row = self._junction_row(subject, change)
            await self._guard(subject, "update", self._runner.delete(table, row))

    # -- value building ---------------------------------------------------------------

    def _changed_values(self, subject: Subject) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for change in subject.changes:
            if isinstance(change, ColumnChange):
                values[change.column.db_name] = self._normalizer.to_database(
                    change.column, change.value
                )
            elif isinstance(change, RelationChange):
                values.update(self._relation_values(change.relation, change.value))
        return values

    def _relation_values(self, relation: RelationMetadata, value: Any) -> dict[str, Any]:
        target = self._registry.target_of(relation)
        ids = self._resolve(relation, value, target, relation.join_columns)
        out: dict[str, Any] = {}
        for jc in relation.join_columns:
            referenced = target.find_column(jc.referenced_column)
            raw = None if ids is None else ids.get(jc.referenced_column)
            out[jc.name] = (
                raw if referenced is None else self._normalizer.to_database(referenced, raw)
            )
        return out

    def _resolve(
        self,
        relation: RelationMetadata,
        value: Any,
        target: EntityMetadata,
        join_columns: tuple[JoinColumn, ...],
    ) -> dict[str, Any] | None:
        if value is None:
            return None
        if isinstance(value, SubjectRef):
            sibling = self._arena[value.handle]
            if not sibling.executed:
                raise PersistenceError(
                    f"{relation.property_name} references a {sibling.name} "
                    "that is not inserted yet",
                    entity_name=sibling.name,
                    operation="insert",
                )
            ids: dict[str, Any] = {}
            for jc in join_columns:
                referenced = target.find_column(jc.referenced_column)
                ids[jc.referenced_column] = (
                    None if referenced is None else self._subject_value(sibling, referenced)
                )
            return ids
        return relation_id_map(relation, value, target, join_columns=join_columns)

    def _junction_row(self, subject: Subject, change: JunctionChange) -> dict[str, Any]:
        junction = change.relation.junction
        assert junction is not None
        target = self._registry.target_of(change.relation)
        row = self._owner_junction_values(subject, junction.join_columns)
        ids = self._resolve(change.relation, change.value, target, junction.inverse_join_columns)
        for jc in junction.inverse_join_columns:
            referenced = target.find_column(jc.referenced_column)
            raw = None if ids is None else ids.get(jc.referenced_column)
            row[jc.name] = (
                raw if referenced is None else self._normalizer.to_database(referenced, raw)
            )
        return row

    def _owner_junction_values(
        self, subject: Subject, join_columns: tuple[JoinColumn, ...]
    ) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for jc in join_columns:
            column = subject.metadata.find_column(jc.referenced_column)
            assert column is not None
            value = self._subject_value(subject, column)
            row[jc.name] = self._normalizer.to_database(column, value)
        return row

    def _primary_where(self, subject: Subject) -> dict[str, Any]:
        where: dict[str, Any] = {}
        for column in subject.metadata.primary_columns:
            where[column.db_name] = self._normalizer.to_database(
                column, self._subject_value(subject, column)
            )
        return where

    @staticmethod
    def _subject_value(subject: Subject, column: ColumnMetadata) -> Any:
        # Values produced by this batch win over the (not yet merged) entity attributes.
        if column.property_path in subject.generated:
            return subject.generated[column.property_path]
        if subject.identifier and column.property_path in subject.identifier:
            return subject.identifier[column.property_path]
        value = subject.metadata.get_value(subject.entity, column)
        return None if value is UNSET else value

    # -- plumbing -----------------------------------------------------------------------

    async def _guard(self, subject: Subject, operation: str, awaitable):
        try:
            return await awaitable
        except PersistenceError as e:
            raise e.with_context(entity_name=subject.name, operation=operation)

    async def _broadcast(
        self, event: LifecycleEvent, subject: Subject, values: dict[str, Any]
    ) -> None:
        if self._broadcaster is None:
            return
        await self._broadcaster.broadcast(
            LifecycleContext(
                event=event,
                entity=subject.entity,
                metadata=subject.metadata,
                snapshot=subject.snapshot,
                values=dict(values),
            )
        )

    def _merge(self, plan: PersistPlan) -> None:
        for subject in [*plan.inserts, *plan.updates]:
            for path, value in subject.generated.items():
                column = subject.metadata.find_column(path)
                if column is not None:
                    subject.metadata.set_value(subject.entity, column, value)
        for subject in plan.removes:
            for column in subject.metadata.primary_columns:
                subject.metadata.set_value(subject.entity, column, None)


# --- Module Notes -----------------------------------------------------------
# Entities are only touched in `_merge`, after commit: a failed batch leaves the caller's
# objects exactly as they were submitted.
