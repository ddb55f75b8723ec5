"""
flushplan.services.entity_manager

Persistence service (connection + pipeline owner).

Responsibilities:
- Expose save/insert/update/remove for single entities or lists of entities.
- Own the connection scope of a batch (or use the caller's connection).
- Wire builder -> change computer -> orderer -> executor for each call.
- Bind a batch id into the logging context and log failures.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from flushplan.db.init_db import init_db
from flushplan.db.loader import SqlAlchemySnapshotLoader
from flushplan.db.query_runner import SqlAlchemyQueryRunner
from flushplan.db.schema import build_schema
from flushplan.db.session import create_engine
from flushplan.metadata.registry import MetadataRegistry
from flushplan.observability.context import batch_context
from flushplan.observability.logging import get_logger
from flushplan.persistence.broadcaster import LifecycleBroadcaster
from flushplan.persistence.builder import Operation, SubjectGraphBuilder
from flushplan.persistence.changes import ChangeComputer
from flushplan.persistence.errors import PersistenceError
from flushplan.persistence.executor import PersistExecutor
from flushplan.persistence.normalizer import ValueNormalizer
from flushplan.persistence.orderer import DependencyOrderer
from flushplan.settings import Settings, get_settings

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SaveOptions:
    # Deliver lifecycle notifications.
    listeners: bool = True
    # Wrap the batch in one transaction; False commits every statement on its own.
    transaction: bool = True
    # Caller-owned connection; an open transaction on it is joined, never committed.
    connection: AsyncConnection | None = None


class EntityManager:
    def __init__(
        self,
        *,
        engine: AsyncEngine,
        registry: MetadataRegistry,
        settings: Settings | None = None,
        broadcaster: LifecycleBroadcaster | None = None,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._settings = settings or get_settings()
        self._broadcaster = broadcaster or LifecycleBroadcaster()
        self._normalizer = ValueNormalizer()
        self._schema = build_schema(registry)

    @classmethod
    def from_settings(
        cls,
        registry: MetadataRegistry,
        settings: Settings | None = None,
        *,
        broadcaster: LifecycleBroadcaster | None = None,
    ) -> EntityManager:
        settings = settings or get_settings()
        return cls(
            engine=create_engine(settings),
            registry=registry,
            settings=settings,
            broadcaster=broadcaster,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def registry(self) -> MetadataRegistry:
        return self._registry

    @property
    def broadcaster(self) -> LifecycleBroadcaster:
        return self._broadcaster

    @property
    def schema(self) -> MetaData:
        return self._schema

    async def create_tables(self) -> None:
        await init_db(self._engine, self._schema)

    async def save(self, target: Any, options: SaveOptions | None = None) -> Any:
        """
        Insert new entities and update stored ones (decided per entity by snapshot).
        """

        return await self._persist(target, Operation.upsert, options)

    async def insert(self, target: Any, options: SaveOptions | None = None) -> Any:
        return await self._persist(target, Operation.insert, options)

    async def update(self, target: Any, options: SaveOptions | None = None) -> Any:
        return await self._persist(target, Operation.update, options)

    async def remove(self, target: Any, options: SaveOptions | None = None) -> Any:
        return await self._persist(target, Operation.remove, options)

    async def _persist(
        self, target: Any, operation: Operation, options: SaveOptions | None
    ) -> Any:
        options = options or SaveOptions()
        entities = list(target) if isinstance(target, list | tuple) else [target]
        if not entities:
            return target

        with batch_context(operation=str(operation)):
            try:
                if options.connection is not None:
                    await self._run(options.connection, entities, operation, options)
                else:
                    async with self._engine.connect() as conn:
                        await self._run(conn, entities, operation, options)
            except PersistenceError as e:
                log.warning(
                    "entity_manager.failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    entity=e.entity_name,
                    statement=e.statement,
                )
                raise
        return target

    async def _run(
        self,
        conn: AsyncConnection,
        entities: list[Any],
        operation: Operation,
        options: SaveOptions,
    ) -> None:
        runner = SqlAlchemyQueryRunner(
            conn,
            self._schema,
            statement_timeout=self._settings.statement_timeout_seconds,
            autocommit=not options.transaction,
        )
        loader = SqlAlchemySnapshotLoader(runner, self._registry, self._normalizer)
        try:
            arena = await SubjectGraphBuilder(self._registry, loader).build(entities, operation)
            ChangeComputer(self._registry, self._normalizer).compute(arena)
            plan = DependencyOrderer(self._registry, self._normalizer).order(arena)
            if not len(plan):
                log.info("entity_manager.nothing_to_persist", subjects=len(arena))
                return

            executor = PersistExecutor(
                runner=runner,
                registry=self._registry,
                broadcaster=self._broadcaster,
                normalizer=self._normalizer,
                listeners=options.listeners,
            )
            await executor.execute(plan)
            log.info(
                "entity_manager.persisted",
                inserts=len(plan.inserts),
                updates=len(plan.updates),
                removes=len(plan.removes),
            )
        finally:
            await runner.release()


# --- Module Notes -----------------------------------------------------------
# One connection per call; nothing is cached between calls except the schema, so an
# EntityManager can be shared by concurrent tasks.
