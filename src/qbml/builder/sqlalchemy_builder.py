"""Reference ``QueryBuilder`` over SQLAlchemy Core.

The builder is mutable and chainable: every clause method records state and
returns ``self``; the statement is composed on demand by ``_compose``. Column
names are quoted through the dialect's identifier preparer, values travel as
bound parameters, and raw fragments become ``text()`` clauses with ``?``
placeholders rewritten to named binds. Select-list entries are labelled so
result rows are keyed by bare column names (``u.name`` yields ``name``).

and/or/not variants are routed from the original method string through the
action registry, so ``where_in("orWhereNotIn", ...)`` adds ``OR col NOT IN``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
import itertools
import math
import re
from typing import Any, Final
from uuid import UUID

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine, Result
from sqlalchemy.engine.interfaces import Dialect
from sqlalchemy.sql.elements import quoted_name

from qbml.actions.registry import ActionRegistry
from qbml.builder.protocol import JoinCallback, OptionMap, SubQuery
from qbml.models import NativeResultSet
from qbml.sql_format import pretty_sql

_logger = get_logger(__name__)

OPERATORS: Final[frozenset[str]] = frozenset(
    {
        "=", "<", ">", "<=", ">=", "<>", "!=",
        "like", "not like", "ilike", "not ilike",
        "&", "|", "^", "<<", ">>",
    }
)
DIRECTIONS: Final[frozenset[str]] = frozenset({"asc", "desc"})
INT32_MAX: Final[int] = 2_147_483_647

_ALIAS_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(.+?)\s+as\s+(\S+)$", re.IGNORECASE)
_TABLE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(\S+?)(?:\s+(?:as\s+)?(\S+))?$", re.IGNORECASE
)
_PLACEHOLDER: Final[re.Pattern[str]] = re.compile(r"\?")
_bind_names: Iterator[int] = itertools.count(1)

_AGGREGATES: Final[dict[str, Callable[..., Any]]] = {
    "selectCount": sa.func.count,
    "selectSum": sa.func.sum,
    "selectAvg": sa.func.avg,
    "selectMin": sa.func.min,
    "selectMax": sa.func.max,
}


@dataclass(frozen=True, slots=True)
class RawSQL:
    """Raw-expression handle returned by ``raw()``."""

    sql: str
    bindings: tuple[Any, ...] = ()


def _python_type_name(value: Any) -> str:
    """Type name for a driver value, used when the driver reports none."""
    if isinstance(value, bool):
        return "BIT"
    if isinstance(value, int):
        return "BIGINT" if abs(value) > INT32_MAX else "INTEGER"
    if isinstance(value, float):
        return "DOUBLE"
    if isinstance(value, Decimal):
        return "DECIMAL"
    if isinstance(value, datetime):
        return "TIMESTAMP"
    if isinstance(value, date):
        return "DATE"
    if isinstance(value, time):
        return "TIME"
    if isinstance(value, UUID):
        return "UUID"
    if isinstance(value, bytes | bytearray | memoryview):
        return "BLOB"
    return "VARCHAR"


def _fold(entries: Sequence[tuple[str, Any]]) -> Any | None:
    """Fold ``(combinator, clause)`` pairs with SQL precedence: AND binds tighter than OR."""
    if not entries:
        return None
    groups: list[list[Any]] = [[]]
    for combinator, clause in entries:
        if combinator == "or" and groups[-1]:
            groups.append([clause])
        else:
            groups[-1].append(clause)
    conjunctions = [group[0] if len(group) == 1 else sa.and_(*group) for group in groups]
    return conjunctions[0] if len(conjunctions) == 1 else sa.or_(*conjunctions)


class SqlAlchemyJoinClause:
    """Collects ``on``/``andOn``/``orOn`` conditions for one join."""

    def __init__(self, builder: SqlAlchemyQueryBuilder) -> None:
        self._builder = builder
        self._conditions: list[tuple[str, Any]] = []

    def on(self, method: str, first: Any, operator: Any = None, second: Any = None) -> SqlAlchemyJoinClause:
        if second is None and operator is not None:
            operator, second = "=", operator
        op = self._builder._operator(operator or "=")
        left = self._builder._column(first)
        right = self._builder._column(second)
        combinator = "or" if method.lower() == "oron" else "and"
        self._conditions.append((combinator, left.op(op)(right)))
        return self

    def condition(self) -> Any | None:
        return _fold(self._conditions)


class SqlAlchemyQueryBuilder:
    """SQLAlchemy Core implementation of the QBML builder protocol.

    Args:
        engine: Default engine for executors
        engines: Named engines selectable through the ``datasource`` option
        dialect: Dialect for compilation (defaults to ``engine.dialect``)
        registry: Action registry used to route and/or/not variants
        ctes: CTE registry shared with the enclosing builder
    """

    def __init__(
        self,
        engine: Engine,
        *,
        engines: Mapping[str, Engine] | None = None,
        dialect: Dialect | None = None,
        registry: ActionRegistry | None = None,
        ctes: dict[str, Any] | None = None,
    ) -> None:
        self.engine = engine
        self.engines: dict[str, Engine] = dict(engines or {})
        self.registry = registry or ActionRegistry()
        self.dialect: Dialect = dialect or engine.dialect
        self._ctes: dict[str, Any] = ctes if ctes is not None else {}
        self._owned_ctes: list[Any] = []

        self._from: Any = None
        self._extra_froms: list[Any] = []
        self._columns: list[Any] = []
        self._distinct = False
        self._wheres: list[tuple[str, Any]] = []
        self._groups: list[Any] = []
        self._havings: list[tuple[str, Any]] = []
        self._orders: list[Any] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._lock: dict[str, bool] | None = None
        self._unions: list[tuple[bool, SqlAlchemyQueryBuilder]] = []

    def new_query(self) -> SqlAlchemyQueryBuilder:
        return SqlAlchemyQueryBuilder(
            self.engine,
            engines=self.engines,
            dialect=self.dialect,
            registry=self.registry,
            ctes=self._ctes,
        )

    def raw(self, sql: str, bindings: list[Any] | None = None) -> RawSQL:
        return RawSQL(sql=sql, bindings=tuple(bindings or ()))

    # ---- element helpers ------------------------------------------------------
    def _quote(self, name: str) -> str:
        preparer = self.dialect.identifier_preparer
        return ".".join(part if part == "*" else preparer.quote(part) for part in name.split("."))

    def _inline(self, raw: RawSQL) -> str:
        """Render a raw fragment with its bindings as SQL literals."""
        if not raw.bindings:
            return raw.sql
        values = iter(raw.bindings)

        def _literal(_m: re.Match[str]) -> str:
            value = next(values, None)
            compiled = sa.literal(value).compile(
                dialect=self.dialect, compile_kwargs={"literal_binds": True}
            )
            return str(compiled)

        return _PLACEHOLDER.sub(_literal, raw.sql)

    def _text(self, sql: Any, bindings: Sequence[Any] | None = None) -> sa.TextClause:
        """``text()`` clause with ``?`` placeholders turned into named binds."""
        if isinstance(sql, RawSQL):
            sql, bindings = sql.sql, sql.bindings
        if not bindings:
            return sa.text(str(sql))
        params: dict[str, Any] = {}
        values = iter(bindings)

        def _named(_m: re.Match[str]) -> str:
            name = f"qbml_{next(_bind_names)}"
            params[name] = next(values, None)
            return f":{name}"

        return sa.text(_PLACEHOLDER.sub(_named, str(sql))).bindparams(**params)

    def _column(self, name: Any) -> Any:
        if isinstance(name, RawSQL):
            return sa.literal_column(self._inline(name))
        if isinstance(name, sa.ColumnElement):
            return name
        if not isinstance(name, str) or not name.strip():
            msg = f"Invalid column reference: {name!r}"
            raise ValueError(msg)
        text = name.strip()
        m = _ALIAS_PATTERN.match(text)
        if m:
            return sa.literal_column(self._quote(m.group(1).strip())).label(m.group(2))
        return sa.literal_column(self._quote(text))

    def _projection(self, column: Any) -> Any:
        """Select-list element labelled with the key result rows should carry."""
        if isinstance(column, RawSQL):
            text = self._inline(column)
            m = _ALIAS_PATTERN.match(text)
            return sa.literal_column(m.group(1)).label(m.group(2)) if m else sa.literal_column(text)
        element = self._column(column)
        if isinstance(column, str) and not isinstance(element, sa.Label):
            name = column.strip().rsplit(".", 1)[-1]
            if name != "*" and self._quote(column.strip()) != name:
                return element.label(name)
        return element

    def _columns_of(self, columns: Any, *, projected: bool = False) -> list[Any]:
        convert = self._projection if projected else self._column
        if isinstance(columns, str):
            return [convert(part) for part in columns.split(",") if part.strip()]
        if isinstance(columns, list | tuple):
            return [convert(col) for col in columns]
        return [convert(columns)]

    def _value(self, value: Any) -> Any:
        if isinstance(value, RawSQL):
            return sa.literal_column(self._inline(value))
        return value

    def _operator(self, operator: Any) -> str:
        op = str(operator).strip().lower()
        if op not in OPERATORS:
            msg = f"Invalid SQL operator: {operator!r}"
            raise ValueError(msg)
        return op

    def _raw_table(self, sql: Any, bindings: Sequence[Any] | None = None) -> Any:
        """FROM element whose name is the raw SQL, rendered verbatim."""
        raw = sql if isinstance(sql, RawSQL) else self.raw(str(sql), list(bindings or ()))
        return sa.table(quoted_name(self._inline(raw), quote=False))

    def _table(self, reference: Any) -> Any:
        if isinstance(reference, RawSQL):
            return self._raw_table(reference)
        if not isinstance(reference, str) or not reference.strip():
            msg = f"Invalid table reference: {reference!r}"
            raise ValueError(msg)
        m = _TABLE_PATTERN.match(reference.strip())
        if not m:
            msg = f"Invalid table reference: {reference!r}"
            raise ValueError(msg)
        name, alias = m.group(1), m.group(2)
        cte = self._ctes.get(name.lower())
        if cte is not None:
            return cte.alias(alias) if alias else cte
        schema, _, table_name = name.rpartition(".")
        table = sa.table(table_name, schema=schema or None)
        return table.alias(alias) if alias else table

    def _sub(self, query: SubQuery) -> SqlAlchemyQueryBuilder:
        sub = query(self.new_query())
        if not isinstance(sub, SqlAlchemyQueryBuilder):
            msg = "Subquery continuation must return a SqlAlchemyQueryBuilder"
            raise TypeError(msg)
        return sub

    def _route(self, method: str) -> tuple[str, bool]:
        action = self.registry.normalize(method)
        return ("or" if action.combinator == "or" else "and"), action.negated

    def _add_where(self, method: str, clause: Any) -> SqlAlchemyQueryBuilder:
        combinator, negated = self._route(method)
        self._wheres.append((combinator, sa.not_(clause) if negated else clause))
        return self

    def _comparison(self, args: Sequence[Any]) -> Any:
        if len(args) == 2:
            column, operator, value = args[0], "=", args[1]
        elif len(args) == 3:
            column, operator, value = args
        else:
            msg = f"Expected (column, value) or (column, operator, value), got {len(args)} arguments"
            raise ValueError(msg)
        col = self._column(column)
        op = self._operator(operator)
        if value is None and op in ("=", "<>", "!="):
            return col.is_(None) if op == "=" else col.is_not(None)
        return col.op(op)(self._value(value))

    # ---- sources -------------------------------------------------------------
    def from_(self, table: Any) -> SqlAlchemyQueryBuilder:
        self._from = self._table(table)
        return self

    def from_raw(self, sql: str, bindings: list[Any] | None = None) -> SqlAlchemyQueryBuilder:
        self._from = self._raw_table(sql, bindings)
        return self

    def from_sub(self, alias: str, query: SubQuery) -> SqlAlchemyQueryBuilder:
        self._from = self._sub(query)._compose().subquery(alias)
        return self

    # ---- projection ------------------------------------------------------------
    def select(self, method: str, columns: Any) -> SqlAlchemyQueryBuilder:
        resolved = self._columns_of(columns, projected=True)
        if method.lower() == "addselect":
            self._columns.extend(resolved)
        else:
            self._columns = resolved
        return self

    def distinct(self) -> SqlAlchemyQueryBuilder:
        self._distinct = True
        return self

    def select_raw(self, sql: str, bindings: list[Any] | None = None) -> SqlAlchemyQueryBuilder:
        self._columns.append(self._projection(self.raw(sql, bindings)))
        return self

    def sub_select(self, alias: str, query: SubQuery) -> SqlAlchemyQueryBuilder:
        self._columns.append(self._sub(query)._compose().scalar_subquery().label(alias))
        return self

    def select_aggregate(self, method: str, column: str, alias: str | None = None) -> SqlAlchemyQueryBuilder:
        base = self.registry.normalize(method).base_action
        func = _AGGREGATES[base]
        target = sa.literal_column("*") if column in (None, "*") else self._column(column)
        label = alias or base.removeprefix("select").lower()
        self._columns.append(func(target).label(label))
        return self

    # ---- filters ----------------------------------------------------------------
    def where(self, method: str, *args: Any) -> SqlAlchemyQueryBuilder:
        return self._add_where(method, self._comparison(args))

    def where_nested(self, method: str, query: SubQuery) -> SqlAlchemyQueryBuilder:
        clause = _fold(self._sub(query)._wheres)
        if clause is None:
            return self
        return self._add_where(method, clause)

    def where_in(self, method: str, column: Any, values: Any) -> SqlAlchemyQueryBuilder:
        col = self._column(column)
        if callable(values):
            target: Any = self._sub(values)._compose()
        elif isinstance(values, RawSQL):
            target = self._text(values)
        elif isinstance(values, list | tuple):
            target = [self._value(v) for v in values]
        else:
            target = [values]
        return self._add_where(method, col.in_(target))

    def where_between(self, method: str, column: Any, start: Any, end: Any) -> SqlAlchemyQueryBuilder:
        return self._add_where(method, self._column(column).between(self._value(start), self._value(end)))

    def where_like(self, method: str, column: Any, value: Any) -> SqlAlchemyQueryBuilder:
        return self._add_where(method, self._column(column).like(self._value(value)))

    def where_null(self, method: str, column: Any) -> SqlAlchemyQueryBuilder:
        return self._add_where(method, self._column(column).is_(None))

    def where_column(self, method: str, first: Any, operator: Any, second: Any) -> SqlAlchemyQueryBuilder:
        clause = self._column(first).op(self._operator(operator))(self._column(second))
        return self._add_where(method, clause)

    def where_exists(self, method: str, query: SubQuery) -> SqlAlchemyQueryBuilder:
        return self._add_where(method, self._sub(query)._compose().exists())

    def where_raw(self, method: str, sql: str, bindings: list[Any] | None = None) -> SqlAlchemyQueryBuilder:
        return self._add_where(method, self._text(sql, bindings))

    # ---- joins --------------------------------------------------------------------
    def _attach(self, method: str, target: Any, onclause: Any) -> SqlAlchemyQueryBuilder:
        if self._from is None:
            msg = f"{method} requires a FROM table"
            raise ValueError(msg)
        kind = method.lower()
        if kind.startswith("right"):
            # Emulated as a left join with the sides swapped.
            self._from = sa.join(target, self._from, onclause, isouter=True)
        else:
            self._from = sa.join(self._from, target, onclause, isouter=kind.startswith("left"))
        return self

    def join(self, method: str, table: Any, first: Any = None, operator: Any = None,
             second: Any = None) -> SqlAlchemyQueryBuilder:
        clause = SqlAlchemyJoinClause(self).on("on", first, operator, second)
        return self._attach(method, self._table(table), clause.condition())

    def join_on(self, method: str, table: Any, conditions: JoinCallback) -> SqlAlchemyQueryBuilder:
        clause = conditions(SqlAlchemyJoinClause(self))
        return self._attach(method, self._table(table), clause.condition())  # type: ignore[attr-defined]

    def cross_join(self, table: Any) -> SqlAlchemyQueryBuilder:
        self._extra_froms.append(self._table(table))
        return self

    def join_sub(self, method: str, alias: str, query: SubQuery,
                 conditions: JoinCallback) -> SqlAlchemyQueryBuilder:
        target = self._sub(query)._compose().subquery(alias)
        clause = conditions(SqlAlchemyJoinClause(self))
        return self._attach(method, target, clause.condition())  # type: ignore[attr-defined]

    def join_raw(self, method: str, sql: str, first: Any = None, operator: Any = None,
                 second: Any = None) -> SqlAlchemyQueryBuilder:
        clause = SqlAlchemyJoinClause(self).on("on", first, operator, second)
        return self._attach(method, self._raw_table(sql), clause.condition())

    # ---- grouping / ordering / paging ------------------------------------------------
    def group_by(self, columns: Any) -> SqlAlchemyQueryBuilder:
        self._groups.extend(self._columns_of(columns))
        return self

    def having(self, method: str, *args: Any) -> SqlAlchemyQueryBuilder:
        combinator, _ = self._route(method)
        self._havings.append((combinator, self._comparison(args)))
        return self

    def having_raw(self, method: str, sql: str, bindings: list[Any] | None = None) -> SqlAlchemyQueryBuilder:
        combinator, _ = self._route(method)
        self._havings.append((combinator, self._text(sql, bindings)))
        return self

    def order_by(self, column: Any, direction: str = "asc") -> SqlAlchemyQueryBuilder:
        dir_ = (direction or "asc").strip().lower()
        if dir_ not in DIRECTIONS:
            msg = f"Invalid order direction: {direction!r}"
            raise ValueError(msg)
        col = self._column(column)
        self._orders.append(col.desc() if dir_ == "desc" else col.asc())
        return self

    def order_by_raw(self, sql: str, bindings: list[Any] | None = None) -> SqlAlchemyQueryBuilder:
        self._orders.append(self._text(sql, bindings))
        return self

    def reorder(self) -> SqlAlchemyQueryBuilder:
        self._orders = []
        return self

    def clear_orders(self) -> SqlAlchemyQueryBuilder:
        return self.reorder()

    def limit(self, value: int) -> SqlAlchemyQueryBuilder:
        self._limit = int(value)
        return self

    def offset(self, value: int) -> SqlAlchemyQueryBuilder:
        self._offset = int(value)
        return self

    def for_page(self, page: int, size: int) -> SqlAlchemyQueryBuilder:
        page, size = max(int(page), 1), max(int(size), 0)
        self._limit, self._offset = size, (page - 1) * size
        return self

    def lock(self, method: str, *args: Any) -> SqlAlchemyQueryBuilder:
        base = self.registry.normalize(method).base_action
        if base == "lockForUpdate":
            self._lock = {"skip_locked": bool(args[0]) if args else False}
        elif base == "sharedLock":
            self._lock = {"read": True}
        elif base == "lock" and args and isinstance(args[0], str):
            hint = args[0].lower()
            if "update" in hint:
                self._lock = {}
            elif "share" in hint:
                self._lock = {"read": True}
            else:
                _logger.debug("Ignoring unsupported lock hint: %s", args[0])
        else:
            # noLock is a SQL Server table hint; clearLock resets.
            self._lock = None
        return self

    # ---- composition --------------------------------------------------------------
    def union(self, method: str, query: SubQuery) -> SqlAlchemyQueryBuilder:
        self._unions.append((method.lower() == "unionall", self._sub(query)))
        return self

    def with_(self, method: str, name: str, query: SubQuery,
              columns: list[str] | None = None) -> SqlAlchemyQueryBuilder:
        stmt = self._sub(query)._compose()
        if columns and isinstance(stmt, sa.Select):
            selected = list(stmt.selected_columns)
            if len(selected) == len(columns):
                stmt = stmt.with_only_columns(
                    *(col.label(label) for col, label in zip(selected, columns, strict=True))
                )
        cte = stmt.cte(name, recursive=method.lower() == "withrecursive")
        self._ctes[name.lower()] = cte
        self._owned_ctes.append(cte)
        return self

    def _compose(self, columns: Sequence[Any] | None = None, *, ordered: bool = True,
                 limited: bool = True) -> Any:
        stmt = sa.select(*(columns if columns is not None else (self._columns or [sa.literal_column("*")])))
        if self._from is not None:
            stmt = stmt.select_from(self._from)
        for extra in self._extra_froms:
            stmt = stmt.select_from(extra)
        if self._distinct:
            stmt = stmt.distinct()
        where = _fold(self._wheres)
        if where is not None:
            stmt = stmt.where(where)
        if self._groups:
            stmt = stmt.group_by(*self._groups)
        having = _fold(self._havings)
        if having is not None:
            stmt = stmt.having(having)
        if self._lock is not None:
            stmt = stmt.with_for_update(**self._lock)

        target: Any = stmt
        if self._unions:
            members = [sub._compose() for _, sub in self._unions]
            kinds = {all_ for all_, _ in self._unions}
            if len(kinds) == 1:
                target = (sa.union_all if kinds.pop() else sa.union)(stmt, *members)
            else:
                for (all_, _), member in zip(self._unions, members, strict=True):
                    target = (sa.union_all if all_ else sa.union)(target, member)

        if ordered and self._orders:
            target = target.order_by(*self._orders)
        if limited and self._limit is not None:
            target = target.limit(self._limit)
        if limited and self._offset is not None:
            target = target.offset(self._offset)
        if self._owned_ctes:
            target = target.add_cte(*self._owned_ctes)
        return target

    # ---- execution -----------------------------------------------------------------------
    @contextmanager
    def _connect(self, options: OptionMap) -> Iterator[Connection]:
        name = options.get("datasource")
        engine = self.engine
        if name:
            if name not in self.engines:
                msg = f"Unknown datasource '{name}'"
                raise ValueError(msg)
            engine = self.engines[name]

        owned = False
        if options.get("username") or options.get("password"):
            url = engine.url.set(username=options.get("username"), password=options.get("password"))
            engine, owned = sa.create_engine(url), True
        try:
            with engine.connect() as conn:
                timeout = options.get("timeout")
                yield conn.execution_options(timeout=timeout) if timeout else conn
        finally:
            if owned:
                engine.dispose()

    def _execute(self, stmt: Any, options: OptionMap) -> Any:
        with self._connect(options) as conn:
            result = conn.execute(stmt)
            if options.get("native"):
                return self._native(result)
            return [dict(row._mapping) for row in result]

    def _scalar(self, stmt: Any, options: OptionMap) -> Any:
        with self._connect(options) as conn:
            return conn.execute(stmt).scalar()

    @staticmethod
    def _native(result: Result[Any]) -> NativeResultSet:
        names = list(result.keys())
        rows = [tuple(row) for row in result]
        types: list[str] = []
        for index in range(len(names)):
            sample = next((row[index] for row in rows if row[index] is not None), None)
            types.append(_python_type_name(sample))
        return NativeResultSet(columns=tuple(zip(names, types, strict=True)), rows=rows)

    def _aggregate(self, func: Callable[..., Any], column: str, options: OptionMap) -> Any:
        target = sa.literal_column("*") if column in (None, "*") else self._column(column)
        if self._groups or self._distinct or self._unions or self._limit is not None:
            sub = self._compose(ordered=False).subquery("aggregate_source")
            return self._scalar(sa.select(func(target)).select_from(sub), options)
        return self._scalar(self._compose([func(target)], ordered=False), options)

    def get(self, options: OptionMap) -> Any:
        return self._execute(self._compose(), options)

    def first(self, options: OptionMap) -> Any:
        stmt = self._compose(limited=False).limit(1)
        if self._offset:
            stmt = stmt.offset(self._offset)
        rows = self._execute(stmt, {**options, "native": False})
        return rows[0] if rows else None

    def find(self, id_value: Any, id_column: str, options: OptionMap) -> Any:
        self.where("where", id_column or "id", id_value)
        return self.first(options)

    def value(self, column: str, options: OptionMap) -> Any:
        stmt = self._compose([self._column(column)], limited=False).limit(1)
        return self._scalar(stmt, options)

    def values(self, column: str, options: OptionMap) -> list[Any]:
        with self._connect(options) as conn:
            return list(conn.execute(self._compose([self._column(column)])).scalars())

    def count(self, column: str, options: OptionMap) -> int:
        return int(self._aggregate(sa.func.count, column or "*", options) or 0)

    def sum(self, column: str, options: OptionMap) -> Any:
        return self._aggregate(sa.func.sum, column, options)

    def min(self, column: str, options: OptionMap) -> Any:
        return self._aggregate(sa.func.min, column, options)

    def max(self, column: str, options: OptionMap) -> Any:
        return self._aggregate(sa.func.max, column, options)

    def exists(self, options: OptionMap) -> bool:
        return bool(self._scalar(sa.select(self._compose(ordered=False).exists()), options))

    def _page(self, page: int, max_rows: int, options: OptionMap) -> Any:
        saved = (self._limit, self._offset)
        try:
            self.for_page(page, max_rows)
            return self.get(options)
        finally:
            self._limit, self._offset = saved

    def paginate(self, page: int, max_rows: int, options: OptionMap) -> dict[str, Any]:
        total = self.count("*", {**options, "native": False})
        results = self._page(page, max_rows, options)
        return {
            "results": results,
            "pagination": {
                "page": page,
                "maxRows": max_rows,
                "totalRecords": total,
                "totalPages": math.ceil(total / max_rows) if max_rows else 0,
            },
        }

    def simple_paginate(self, page: int, max_rows: int, options: OptionMap) -> dict[str, Any]:
        return {
            "results": self._page(page, max_rows, options),
            "pagination": {"page": page, "maxRows": max_rows, "totalRecords": 0, "totalPages": 0},
        }

    def to_sql(self) -> str:
        compiled = self._compose().compile(dialect=self.dialect, compile_kwargs={"literal_binds": True})
        return str(compiled)

    def dump(self) -> str:
        sql = pretty_sql(self.to_sql())
        _logger.info("QBML dump:\n%s", sql)
        return sql


__all__ = ["RawSQL", "SqlAlchemyJoinClause", "SqlAlchemyQueryBuilder"]
