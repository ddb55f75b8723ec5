"""
flushplan.persistence.errors

Error taxonomy for the persistence pipeline.

Responsibilities:
- Give every failure mode of a save/remove batch its own type.
- Carry enough context (entity, operation, statement) for callers and logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


class PersistenceError(Exception):
    """
    Base class. Context fields are filled in by whichever layer knows them; the executor
    adds entity/operation to errors raised by the query runner.
    """

    def __init__(
        self,
        message: str,
        *,
        entity_name: str | None = None,
        operation: str | None = None,
        statement: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity_name = entity_name
        self.operation = operation
        self.statement = statement

    def with_context(self, *, entity_name: str, operation: str) -> PersistenceError:
        if self.entity_name is None:
            self.entity_name = entity_name
        if self.operation is None:
            self.operation = operation
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.entity_name or self.operation:
            parts.append(f"[{self.operation or '?'} {self.entity_name or '?'}]")
        return " ".join(parts)


class MetadataError(PersistenceError):
    pass


class ValidationError(PersistenceError):
    # Raised before any statement is issued.
    pass


class CycleError(PersistenceError):
    def __init__(self, message: str, *, members: Sequence[str] = (), **context: Any) -> None:
        super().__init__(message, **context)
        self.members = list(members)


class OptimisticLockError(PersistenceError):
    def __init__(
        self,
        message: str,
        *,
        expected: Any = None,
        actual: Any = None,
        **context: Any,
    ) -> None:
        super().__init__(message, **context)
        self.expected = expected
        self.actual = actual


class QueryFailedError(PersistenceError):
    def __init__(
        self,
        message: str,
        *,
        statement: str | None = None,
        parameters: Mapping[str, Any] | Sequence[Any] | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message, statement=statement, **context)
        self.parameters = parameters


# --- Module Notes -----------------------------------------------------------
# No error here is retried automatically: generated ids make a blind retry unsafe.
