"""
flushplan.persistence.broadcaster

Lifecycle notifications around each executed statement.

Responsibilities:
- Register sync or async listeners per event, optionally scoped to an entity class.
- Deliver before/after insert/update/remove events in registration order.
"""

from __future__ import annotations

import enum
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from flushplan.metadata.model import EntityMetadata


class LifecycleEvent(enum.StrEnum):
    before_insert = "before_insert"
    after_insert = "after_insert"
    before_update = "before_update"
    after_update = "after_update"
    before_remove = "before_remove"
    after_remove = "after_remove"


@dataclass(frozen=True, slots=True)
class LifecycleContext:
    event: LifecycleEvent
    entity: Any
    metadata: EntityMetadata
    # Stored state the statement is based on (None for inserts).
    snapshot: dict[str, Any] | None = None
    # Physical column -> value written by the statement (empty for removes).
    values: dict[str, Any] | None = None


Listener = Callable[[LifecycleContext], Awaitable[None] | None]


class LifecycleBroadcaster:
    def __init__(self) -> None:
        self._listeners: list[tuple[LifecycleEvent, type | None, Listener]] = []

    def subscribe(
        self,
        event: LifecycleEvent,
        listener: Listener,
        *,
        entity: type | None = None,
    ) -> Callable[[], None]:
        """
        Register `listener`; returns a callable that unregisters it.
        """

        entry = (event, entity, listener)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def listens(self, event: LifecycleEvent, *, entity: type | None = None):
        # Decorator form of `subscribe`.
        def _decorator(fn: Listener) -> Listener:
            self.subscribe(event, fn, entity=entity)
            return fn

        return _decorator

    async def broadcast(self, context: LifecycleContext) -> None:
        # Exceptions propagate: a failing listener fails the batch like a failing statement.
        for event, entity, listener in list(self._listeners):
            if event != context.event:
                continue
            if entity is not None and not isinstance(context.entity, entity):
                continue
            result = listener(context)
            if inspect.isawaitable(result):
                await result


# --- Module Notes -----------------------------------------------------------
# The executor skips broadcasting entirely when `SaveOptions.listeners` is False.
