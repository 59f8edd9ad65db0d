"""
Structured error types for tdsbridge.

Every failure that leaves the adapter is a :class:`TdsBridgeError`
subclass carrying a category, a retry hint, structured context and the
chained driver exception.  Driver exceptions never escape raw: the
statement executor hands them to :func:`translate_driver_error`, which
classifies SQL Server's message texts into the constraint / deadlock /
disconnect subclasses below.

Manifesto:
    - **Typed hierarchy:** callers catch ``UniqueConstraintViolation``,
      not ``"Violation of UNIQUE KEY" in str(e)``
    - **Explicit retry semantics:** deadlocks and dropped connections are
      retryable; everything else is not
    - **Error chaining:** the driver exception is always kept as ``cause``

Architecture:
    ::

        TdsBridgeError
        ├── TransientError (retryable)
        │   ├── DatabaseConnectionError      connect-time failure
        │   └── PoolTimeoutError             no connection within timeout
        ├── ConfigError                      bad options / unknown shard
        ├── CancellationFailure              cleanup only, never escalated
        └── DatabaseError
            └── StatementError               send / execute / drain failure
                ├── IntegrityError
                │   ├── UniqueConstraintViolation
                │   ├── ForeignKeyConstraintViolation
                │   ├── CheckConstraintViolation
                │   └── NotNullConstraintViolation
                ├── SerializationFailure     deadlock victim (retryable)
                └── DatabaseDisconnectError  connection lost (retryable)

Guardrails:
    ❌ DON'T: ``except Exception: pass`` around a statement
    ✅ DO: let ``StatementError`` propagate; retry policy belongs upstream

    ❌ DON'T: raise from a cancellation in a cleanup path
    ✅ DO: log ``CancellationFailure`` and keep the original error

Tags:
    error-handling, exception-hierarchy, mssql, tdsbridge
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    DATABASE = "DATABASE"         # Statement failures, constraint violations
    CONNECTION = "CONNECTION"     # Connect, pool checkout, lost sessions
    CONFIG = "CONFIG"             # Missing or invalid options
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-``None`` fields are serialized, so the same context type
    serves connect failures (``server``) and statement failures
    (``server``, ``sql``, ``number``).

    Attributes:
        server: Shard / server tag the connection was checked out for
        sql: SQL text that failed
        number: SQL Server error number, when the driver reports one
        severity: SQL Server severity level, when reported
        metadata: Additional key-value pairs
    """

    server: str | None = None
    sql: str | None = None
    number: int | None = None
    severity: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["server", "sql", "number", "severity"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TdsBridgeError(Exception):
    """
    Base exception for all tdsbridge errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    raising sites only need a message and, usually, a ``cause``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TdsBridgeError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StatementError("Failed").with_context(server="reporting", sql=sql)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS
# =============================================================================


class TransientError(TdsBridgeError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.CONNECTION
    default_retryable = True


class DatabaseConnectionError(TransientError):
    """The driver could not open a session to the server."""


class PoolTimeoutError(TransientError):
    """No pooled connection became available within the pool timeout."""


# =============================================================================
# CONFIG / CLEANUP ERRORS
# =============================================================================


class ConfigError(TdsBridgeError):
    """Missing or invalid configuration. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class CancellationFailure(TdsBridgeError):
    """Cancelling a pending result failed.

    Raised by the driver binding, caught and logged by the executor.
    """

    default_category = ErrorCategory.CONNECTION


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(TdsBridgeError):
    """Database query or transaction error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class StatementError(DatabaseError):
    """Failure while sending, executing or draining a SQL batch."""


class IntegrityError(StatementError):
    """Database integrity constraint violation."""


class UniqueConstraintViolation(IntegrityError):
    pass


class ForeignKeyConstraintViolation(IntegrityError):
    pass


class CheckConstraintViolation(IntegrityError):
    pass


class NotNullConstraintViolation(IntegrityError):
    pass


class SerializationFailure(StatementError):
    """The session was chosen as a deadlock victim."""

    default_retryable = True


class DatabaseDisconnectError(StatementError):
    """The connection died mid-statement; the pool must discard it."""

    default_category = ErrorCategory.CONNECTION
    default_retryable = True


# =============================================================================
# DRIVER ERROR TRANSLATION
# =============================================================================

# Ordered: first match wins.
DATABASE_ERROR_PATTERNS: list[tuple[re.Pattern[str], type[StatementError]]] = [
    (
        re.compile(
            r"Violation of UNIQUE KEY constraint"
            r"|Violation of PRIMARY KEY constraint.+Cannot insert duplicate key"
            r"|Cannot insert duplicate key row",
            re.DOTALL,
        ),
        UniqueConstraintViolation,
    ),
    (re.compile(r"conflicted with the (FOREIGN KEY.*|REFERENCE) constraint"), ForeignKeyConstraintViolation),
    (re.compile(r"conflicted with the CHECK constraint"), CheckConstraintViolation),
    (re.compile(r"column does not allow nulls"), NotNullConstraintViolation),
    (
        re.compile(r"was deadlocked on lock resources with another process and has been chosen as the deadlock victim"),
        SerializationFailure,
    ),
    (
        re.compile(
            r"DBPROCESS is dead or not enabled"
            r"|Write to the server failed"
            r"|Read from the server failed"
            r"|not connected",
            re.IGNORECASE,
        ),
        DatabaseDisconnectError,
    ),
]


def _driver_message(error: BaseException) -> str:
    # _mssql exceptions carry the server text in ``message``; bytes on
    # some FreeTDS builds.
    message = getattr(error, "message", None) or str(error)
    if isinstance(message, bytes):
        message = message.decode("utf-8", "replace")
    return str(message)


def translate_driver_error(
    error: BaseException,
    *,
    sql: str | None = None,
    server: str | None = None,
) -> StatementError:
    """Wrap a driver exception into the matching :class:`StatementError`.

    The original message is preserved verbatim and the driver exception
    is chained as ``cause``.
    """
    message = _driver_message(error)
    error_class: type[StatementError] = StatementError
    for pattern, candidate in DATABASE_ERROR_PATTERNS:
        if pattern.search(message):
            error_class = candidate
            break

    context = ErrorContext(
        server=server,
        sql=sql,
        number=getattr(error, "number", None),
        severity=getattr(error, "severity", None),
    )
    return error_class(message, context=context, cause=error)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "TdsBridgeError",
    "TransientError",
    "DatabaseConnectionError",
    "PoolTimeoutError",
    "ConfigError",
    "CancellationFailure",
    "DatabaseError",
    "StatementError",
    "IntegrityError",
    "UniqueConstraintViolation",
    "ForeignKeyConstraintViolation",
    "CheckConstraintViolation",
    "NotNullConstraintViolation",
    "SerializationFailure",
    "DatabaseDisconnectError",
    "DATABASE_ERROR_PATTERNS",
    "translate_driver_error",
]
