"""Typed exceptions for the mirror store.

Repositories report infrastructure failures (SQLite connection or query
errors) as typed exceptions carrying the operation that failed. Expected
outcomes stay in return values: a missing row is ``None``, and an insert that
hits a uniqueness constraint returns ``None``/``False`` meaning "already
recorded".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn


@dataclass(slots=True)
class DatabaseOperationContext:
    """Operation metadata carried by repository exceptions.

    Attributes:
        operation: Stable identifier such as ``"settlements.insert_settlement"``.
        details: Optional key values for logs.
    """

    operation: str
    details: str | None = None


class DatabaseError(RuntimeError):
    """Base exception for mirror-store failures."""


class DatabaseOperationError(DatabaseError):
    """A repository operation failed.

    Args:
        context: Operation metadata.
        cause: Underlying sqlite exception, when there is one.
    """

    def __init__(
        self,
        *,
        context: DatabaseOperationContext,
        cause: Exception | None = None,
    ) -> None:
        message = context.operation
        if context.details:
            message = f"{message}: {context.details}"
        super().__init__(message)
        self.context = context
        self.cause = cause


class DatabaseReadError(DatabaseOperationError):
    """Query failure."""


class DatabaseWriteError(DatabaseOperationError):
    """Insert/update or transaction failure."""


class SessionCountersChanged(DatabaseError):
    """A session's ``chunks_consumed`` moved between the read and the write.

    Raised from inside the write transaction, so the insert it guarded is
    rolled back. Callers re-read the mirror and recompute.
    """

    def __init__(self, session_id: int, expected: int) -> None:
        super().__init__(
            f"session {session_id} no longer has chunks_consumed={expected}; write rolled back"
        )
        self.session_id = session_id
        self.expected = expected


def raise_read_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Re-raise ``exc`` as a :class:`DatabaseReadError`, keeping the cause chained."""
    if isinstance(exc, DatabaseError):
        raise exc
    raise DatabaseReadError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc


def raise_write_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Re-raise ``exc`` as a :class:`DatabaseWriteError`, keeping the cause chained."""
    if isinstance(exc, DatabaseError):
        raise exc
    raise DatabaseWriteError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc
