"""
flushplan.observability.context

Batch-scoped logging context.

Responsibilities:
- Generate a batch id per save/remove call.
- Bind batch metadata into structlog contextvars for the duration of the call.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import structlog


@contextmanager
def batch_context(*, operation: str, batch_id: str | None = None) -> Iterator[str]:
    """
    - Ensures every persistence batch has a batch id
    - Restores the caller's context afterwards, so nested calls do not clobber each other
    """

    batch_id = batch_id or uuid.uuid4().hex
    tokens = structlog.contextvars.bind_contextvars(batch_id=batch_id, operation=operation)
    try:
        yield batch_id
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


# --- Module Notes -----------------------------------------------------------
# contextvars are task-local under asyncio, so concurrent batches on separate
# connections keep separate batch ids.
