"""Typed models for QBML configuration, validation, and results.

Pydantic models cover anything that crosses a boundary (configuration,
execute options, MCP tool payloads, the tabular wire format). Small immutable
value objects used on hot paths are frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from qbml.security.patterns import DangerousPattern

SecurityMode = Literal["none", "allow", "block"]
Combinator = Literal["", "and", "or"]
ColumnType = Literal[
    "integer",
    "bigint",
    "decimal",
    "varchar",
    "boolean",
    "datetime",
    "uuid",
    "object",
    "array",
    "binary",
    "unknown",
]
FormatName = Literal["array", "query", "tabular", "struct"]

# -----------------------
# Configuration
# -----------------------


class SecurityPolicy(BaseModel):
    """Allow/block policy for one reference category (tables, actions, executors)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    mode: SecurityMode = Field(default="none", description="'none' permits everything")
    entries: tuple[str, ...] = Field(
        default=(),
        alias="list",
        description="Exact names or single-level '*' globs, matched case-insensitively",
    )


class SecurityConfig(BaseModel):
    """Security policies plus extra dangerous patterns appended to the built-in catalog."""

    model_config = ConfigDict(frozen=True)

    tables: SecurityPolicy = Field(default_factory=SecurityPolicy)
    actions: SecurityPolicy = Field(default_factory=SecurityPolicy)
    executors: SecurityPolicy = Field(default_factory=SecurityPolicy)
    extra_patterns: tuple[DangerousPattern, ...] = Field(
        default=(), description="Additional dialect-specific dangerous patterns"
    )


class QBMLDefaults(BaseModel):
    """Execution defaults applied beneath query-declared and caller options."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timeout: int | None = Field(default=None, description="Query timeout in seconds")
    max_rows: int | None = Field(
        default=None, alias="maxRows", description="Row ceiling for result-set executors"
    )
    datasource: str | None = Field(default=None, description="Default datasource name")
    return_format: str | list[Any] = Field(
        default="array", alias="returnFormat", description="Default return format"
    )


class QBMLConfig(BaseModel):
    """Complete interpreter configuration."""

    model_config = ConfigDict(frozen=True)

    security: SecurityConfig = Field(default_factory=SecurityConfig)
    aliases: dict[str, str] = Field(
        default_factory=dict, description="Friendly table name -> actual table name"
    )
    defaults: QBMLDefaults = Field(default_factory=QBMLDefaults)
    avg_default: int | float = Field(
        default=0, description="Value returned by avg() over an empty set"
    )


# -----------------------
# Execute options
# -----------------------


class ExecuteOptions(BaseModel):
    """Caller-supplied options for ``QBML.execute``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    params: dict[str, Any] = Field(default_factory=dict)
    return_format: str | list[Any] | None = Field(default=None, alias="returnFormat")
    datasource: str | None = None
    timeout: int | None = None
    username: str | None = None
    password: str | None = None

    def execution_options(self) -> dict[str, Any]:
        """Return the execution-option keys that were explicitly supplied."""
        return {
            key: value
            for key, value in (
                ("datasource", self.datasource),
                ("timeout", self.timeout),
                ("username", self.username),
                ("password", self.password),
            )
            if value is not None
        }


# -----------------------
# Registry / validation
# -----------------------


@dataclass(frozen=True, slots=True)
class NormalizedAction:
    """Routing view of an action name.

    ``qb_method`` is always the untouched input; only ``base_action``,
    ``combinator`` and ``negated`` are derived.
    """

    base_action: str
    combinator: Combinator
    negated: bool
    qb_method: str


class ValidationResult(BaseModel):
    """Outcome of a security check."""

    valid: bool = Field(description="True when the reference or expression is permitted")
    message: str = Field(default="", description="Reason for rejection, empty when valid")
    resolved: str | None = Field(
        default=None, description="Resolved table reference after alias rewriting"
    )
    matched_pattern: str | None = Field(
        default=None, description="Name of the dangerous pattern that matched"
    )

    @classmethod
    def ok(cls, resolved: str | None = None) -> ValidationResult:
        return cls(valid=True, resolved=resolved)

    @classmethod
    def fail(cls, message: str, *, matched_pattern: str | None = None) -> ValidationResult:
        return cls(valid=False, message=message, matched_pattern=matched_pattern)


# -----------------------
# Results
# -----------------------


class TabularColumn(BaseModel):
    """Column metadata in the tabular wire format."""

    name: str
    type: ColumnType


class TabularResult(BaseModel):
    """Compact columnar result: ``len(rows[i]) == len(columns)`` for every row."""

    columns: list[TabularColumn] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


@dataclass(frozen=True, slots=True)
class NativeResultSet:
    """Result set as produced by a collaborator, with its own type names."""

    columns: tuple[tuple[str, str], ...]
    rows: list[tuple[Any, ...]] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [name for name, _ in self.columns]

    def as_dicts(self) -> list[dict[str, Any]]:
        names = self.column_names
        return [dict(zip(names, row, strict=False)) for row in self.rows]


@dataclass(frozen=True, slots=True)
class ParsedFormat:
    """Parsed return format: bare name or ``[struct, columnKey, valueKeys?]``."""

    format: FormatName
    column_key: str | None = None
    value_keys: tuple[str, ...] = ()

    @property
    def wants_native(self) -> bool:
        return self.format in ("query", "tabular")


class QBMLExecuteResult(BaseModel):
    """Structured response from the execute_qbml tool."""

    status: Literal["ok", "error"] = Field(default="ok", description="Overall status")
    executor: str | None = Field(default=None, description="Executor that produced the result")
    return_format: str | None = Field(default=None, description="Effective return format")
    result: Any = Field(default=None, description="Executor result after shaping")
    elapsed_ms: float = Field(default=0.0, description="Wall time spent in execute()")
    error_kind: str | None = Field(default=None, description="Error kind when status=error")
    error_message: str | None = Field(default=None, description="Error message when status=error")
    timestamp: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(),
        description="UTC ISO8601 timestamp of completion",
    )
