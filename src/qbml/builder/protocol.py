"""Query builder collaborator interface.

QBML never writes SQL. It drives an object implementing ``QueryBuilder``,
one method per action family. Methods that have and/or/not variants take the
original action string as ``method`` so the builder applies its own
combinator and negation handling (``where("orWhere", ...)``,
``where_in("andWhereNotIn", ...)``).

Nested structures are built through continuations: the builder creates a
fresh sub-builder (or join clause), passes it to the callback, and uses what
the callback returns. QBML never reaches into builder internals.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

SubQuery = Callable[["QueryBuilder"], "QueryBuilder"]
JoinCallback = Callable[["JoinClause"], "JoinClause"]
OptionMap = Mapping[str, Any]


@runtime_checkable
class JoinClause(Protocol):
    """Join condition target handed to ``on`` continuations."""

    def on(self, method: str, first: Any, operator: Any = None, second: Any = None) -> JoinClause:
        """Add a join condition; ``method`` is ``on``, ``andOn`` or ``orOn``."""
        ...


@runtime_checkable
class QueryBuilder(Protocol):
    """Capability interface consumed by the orchestrator."""

    def new_query(self) -> QueryBuilder: ...

    def raw(self, sql: str, bindings: list[Any] | None = None) -> Any:
        """Return a builder-native raw expression handle."""
        ...

    # ---- sources ----------------------------------------------------------
    def from_(self, table: Any) -> QueryBuilder: ...

    def from_raw(self, sql: str, bindings: list[Any] | None = None) -> QueryBuilder: ...

    def from_sub(self, alias: str, query: SubQuery) -> QueryBuilder: ...

    # ---- projection -------------------------------------------------------
    def select(self, method: str, columns: Any) -> QueryBuilder:
        """``select`` replaces the projection; ``addSelect`` extends it."""
        ...

    def distinct(self) -> QueryBuilder: ...

    def select_raw(self, sql: str, bindings: list[Any] | None = None) -> QueryBuilder: ...

    def sub_select(self, alias: str, query: SubQuery) -> QueryBuilder: ...

    def select_aggregate(self, method: str, column: str, alias: str | None = None) -> QueryBuilder:
        """``selectCount``/``selectSum``/``selectAvg``/``selectMin``/``selectMax``."""
        ...

    # ---- filters ----------------------------------------------------------
    def where(self, method: str, *args: Any) -> QueryBuilder:
        """``(column, value)`` or ``(column, operator, value)``; arity is preserved."""
        ...

    def where_nested(self, method: str, query: SubQuery) -> QueryBuilder: ...

    def where_in(self, method: str, column: Any, values: Any) -> QueryBuilder:
        """``values`` is a sequence, or a ``SubQuery`` continuation for ``IN (SELECT ...)``."""
        ...

    def where_between(self, method: str, column: Any, start: Any, end: Any) -> QueryBuilder: ...

    def where_like(self, method: str, column: Any, value: Any) -> QueryBuilder: ...

    def where_null(self, method: str, column: Any) -> QueryBuilder: ...

    def where_column(self, method: str, first: Any, operator: Any, second: Any) -> QueryBuilder: ...

    def where_exists(self, method: str, query: SubQuery) -> QueryBuilder: ...

    def where_raw(self, method: str, sql: str, bindings: list[Any] | None = None) -> QueryBuilder: ...

    # ---- joins ------------------------------------------------------------
    def join(self, method: str, table: Any, first: Any = None, operator: Any = None,
             second: Any = None) -> QueryBuilder: ...

    def join_on(self, method: str, table: Any, conditions: JoinCallback) -> QueryBuilder: ...

    def cross_join(self, table: Any) -> QueryBuilder: ...

    def join_sub(self, method: str, alias: str, query: SubQuery,
                 conditions: JoinCallback) -> QueryBuilder: ...

    def join_raw(self, method: str, sql: str, first: Any = None, operator: Any = None,
                 second: Any = None) -> QueryBuilder:
        """Join a raw table expression (``"users u WITH (NOLOCK)"``)."""
        ...

    # ---- grouping / ordering / paging -----------------------------------------
    def group_by(self, columns: Any) -> QueryBuilder: ...

    def having(self, method: str, *args: Any) -> QueryBuilder: ...

    def having_raw(self, method: str, sql: str, bindings: list[Any] | None = None) -> QueryBuilder: ...

    def order_by(self, column: Any, direction: str = "asc") -> QueryBuilder: ...

    def order_by_raw(self, sql: str, bindings: list[Any] | None = None) -> QueryBuilder: ...

    def reorder(self) -> QueryBuilder: ...

    def clear_orders(self) -> QueryBuilder: ...

    def limit(self, value: int) -> QueryBuilder: ...

    def offset(self, value: int) -> QueryBuilder: ...

    def for_page(self, page: int, size: int) -> QueryBuilder: ...

    def lock(self, method: str, *args: Any) -> QueryBuilder:
        """``lock``/``lockForUpdate``/``sharedLock``/``noLock``/``clearLock``."""
        ...

    # ---- composition ------------------------------------------------------
    def union(self, method: str, query: SubQuery) -> QueryBuilder: ...

    def with_(self, method: str, name: str, query: SubQuery,
              columns: list[str] | None = None) -> QueryBuilder: ...

    # ---- executors --------------------------------------------------------
    def get(self, options: OptionMap) -> Any: ...

    def first(self, options: OptionMap) -> Any: ...

    def find(self, id_value: Any, id_column: str, options: OptionMap) -> Any: ...

    def value(self, column: str, options: OptionMap) -> Any: ...

    def values(self, column: str, options: OptionMap) -> list[Any]: ...

    def count(self, column: str, options: OptionMap) -> int: ...

    def sum(self, column: str, options: OptionMap) -> Any: ...

    def min(self, column: str, options: OptionMap) -> Any: ...

    def max(self, column: str, options: OptionMap) -> Any: ...

    def exists(self, options: OptionMap) -> bool: ...

    def paginate(self, page: int, max_rows: int, options: OptionMap) -> dict[str, Any]: ...

    def simple_paginate(self, page: int, max_rows: int,
                        options: OptionMap) -> dict[str, Any]: ...

    def to_sql(self) -> str: ...

    def dump(self) -> str: ...
