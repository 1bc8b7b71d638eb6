"""Exception hierarchy for QBML.

Every failure raised by the interpreter is fatal and immediate: the
orchestrator never executes a partially built query. Each exception class
carries a stable ``kind`` string that callers (and the MCP surface) can use
to branch on the failure category without matching on messages.

Exception Categories:
- Security errors for policy rejections and dangerous raw SQL
- Definition errors for malformed subquery, union, and raw markers
- Return-format errors for struct projections over missing columns
"""

from __future__ import annotations

from typing import ClassVar


class QBMLError(Exception):
    """Base exception for QBML operations.

    All other exceptions in this module inherit from this class.
    """

    kind: ClassVar[str] = "QBMLError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---- security ----------------------------------------------------------
class SecurityError(QBMLError):
    """Base class for policy and injection rejections."""

    kind: ClassVar[str] = "SecurityError"


class SecurityViolationError(SecurityError):
    """Raised when whole-query pre-flight validation fails.

    No builder call has been made when this is raised.
    """

    kind: ClassVar[str] = "SecurityViolation"


class ActionNotAllowedError(SecurityError):
    """Raised when the action policy rejects an action name."""

    kind: ClassVar[str] = "ActionNotAllowed"


class ExecutorNotAllowedError(SecurityError):
    """Raised when the executor policy rejects an executor name."""

    kind: ClassVar[str] = "ExecutorNotAllowed"


class InvalidTableError(SecurityError):
    """Raised when a table reference is rejected by the table policy."""

    kind: ClassVar[str] = "InvalidTable"


class InvalidRawExpressionError(SecurityError):
    """Raised when a raw SQL fragment matches a dangerous pattern."""

    kind: ClassVar[str] = "InvalidRawExpression"

    def __init__(self, message: str, matched_pattern: str | None = None) -> None:
        super().__init__(message)
        self.matched_pattern = matched_pattern


# ---- definition shape ----------------------------------------------------
class InvalidRawError(QBMLError):
    """Raised when a ``$raw`` marker is neither a string nor ``{sql, bindings}``."""

    kind: ClassVar[str] = "InvalidRaw"


class InvalidFromSubError(QBMLError):
    """Raised when ``fromSub`` is missing its alias or nested query."""

    kind: ClassVar[str] = "InvalidFromSub"


class InvalidSubSelectError(QBMLError):
    """Raised when ``subSelect`` is missing its alias or nested query."""

    kind: ClassVar[str] = "InvalidSubSelect"


class InvalidJoinSubError(QBMLError):
    """Raised when a ``joinSub`` variant is missing its alias or nested query."""

    kind: ClassVar[str] = "InvalidJoinSub"


class InvalidWhereExistsError(QBMLError):
    """Raised when a ``whereExists`` variant has no nested query."""

    kind: ClassVar[str] = "InvalidWhereExists"


class InvalidUnionError(QBMLError):
    """Raised when ``union``/``unionAll`` has no nested query."""

    kind: ClassVar[str] = "InvalidUnion"


class InvalidCTEError(QBMLError):
    """Raised when ``with``/``withRecursive`` is missing its name or nested query."""

    kind: ClassVar[str] = "InvalidCTE"


# ---- return format -------------------------------------------------------
class ReturnFormatError(QBMLError):
    """Base class for result-shaping failures."""

    kind: ClassVar[str] = "ReturnFormatError"


class InvalidReturnFormatError(ReturnFormatError):
    """Raised for an unrecognized return format name."""

    kind: ClassVar[str] = "InvalidReturnFormat"


class InvalidColumnKeyError(ReturnFormatError):
    """Raised when the struct key column is absent from the result set."""

    kind: ClassVar[str] = "InvalidColumnKey"


class InvalidValueKeyError(ReturnFormatError):
    """Raised when a struct value column is absent from the result set."""

    kind: ClassVar[str] = "InvalidValueKey"


__all__ = [
    "ActionNotAllowedError",
    "ExecutorNotAllowedError",
    "InvalidCTEError",
    "InvalidColumnKeyError",
    "InvalidFromSubError",
    "InvalidJoinSubError",
    "InvalidRawError",
    "InvalidRawExpressionError",
    "InvalidReturnFormatError",
    "InvalidSubSelectError",
    "InvalidTableError",
    "InvalidUnionError",
    "InvalidValueKeyError",
    "InvalidWhereExistsError",
    "QBMLError",
    "ReturnFormatError",
    "SecurityError",
    "SecurityViolationError",
]
