"""
flushplan

Unit-of-work persistence engine: plans and executes the ordered INSERT/UPDATE/DELETE
statements that synchronize a graph of in-memory entities with a relational store.

Responsibilities:
- Expose package version metadata.
- Re-export the public surface (metadata descriptors, EntityManager, error types).
"""

from flushplan.metadata.model import (
    UNSET,
    Cascade,
    ColumnMetadata,
    ColumnType,
    EmbeddedMetadata,
    EntityMetadata,
    JoinColumn,
    JunctionMetadata,
    RelationKind,
    RelationMetadata,
)
from flushplan.metadata.registry import MetadataRegistry
from flushplan.persistence.broadcaster import LifecycleBroadcaster, LifecycleEvent
from flushplan.persistence.errors import (
    CycleError,
    MetadataError,
    OptimisticLockError,
    PersistenceError,
    QueryFailedError,
    ValidationError,
)
from flushplan.services.entity_manager import EntityManager, SaveOptions

__all__ = [
    "UNSET",
    "Cascade",
    "ColumnMetadata",
    "ColumnType",
    "CycleError",
    "EmbeddedMetadata",
    "EntityManager",
    "EntityMetadata",
    "JoinColumn",
    "JunctionMetadata",
    "LifecycleBroadcaster",
    "LifecycleEvent",
    "MetadataError",
    "MetadataRegistry",
    "OptimisticLockError",
    "PersistenceError",
    "QueryFailedError",
    "RelationKind",
    "RelationMetadata",
    "SaveOptions",
    "ValidationError",
    "__version__",
]

__version__ = "0.1.0"


# --- Module Notes -----------------------------------------------------------
# Submodules avoid importing this package root so the re-exports above never cycle.
