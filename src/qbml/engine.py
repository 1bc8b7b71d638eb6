"""Query assembly orchestrator.

``QBML`` turns a query definition (an ordered list of action objects) into a
sequence of calls on a ``QueryBuilder`` and, for ``execute``, runs the
terminal executor and shapes its result.

Pipeline for one definition:

1. Whole-tree security pre-flight (nothing touches the builder on failure)
2. CTE items are assembled first and registered with the builder
3. Every other item: ``when``/``else`` gating, ``$param`` then ``$raw``
   resolution, positional-argument conversion, per-action validation and
   dispatch by base action with the original action string as ``method``
4. Executor parsing, option merging, return-format resolution and dispatch

Nested definitions (subqueries, CTEs, unions, exists, join subs) are handed
to the builder as continuations that recurse into step 2-3 with an explicit
``BuildContext``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from functools import partial
import re
import time
from typing import Any, Final

from fastmcp.utilities.logging import get_logger

from qbml import tabular
from qbml.actions.arguments import AUXILIARY_KEYS, is_action_list, to_positional
from qbml.actions.registry import (
    CTE_ACTIONS,
    JOIN_ACTIONS,
    JOIN_RAW_ACTIONS,
    JOIN_SUB_ACTIONS,
    LOCK_ACTIONS,
    ActionRegistry,
)
from qbml.builder.protocol import JoinClause, QueryBuilder, SubQuery
from qbml.conditions import ConditionEvaluator
from qbml.exceptions import (
    ActionNotAllowedError,
    ExecutorNotAllowedError,
    InvalidCTEError,
    InvalidFromSubError,
    InvalidJoinSubError,
    InvalidRawExpressionError,
    InvalidSubSelectError,
    InvalidTableError,
    InvalidUnionError,
    InvalidWhereExistsError,
    SecurityViolationError,
)
from qbml.models import ExecuteOptions, NormalizedAction, ParsedFormat, QBMLConfig, ValidationResult
from qbml.resolver import contains_raw_refs, resolve_param_refs, resolve_raw_refs, strip_missing
from qbml.security.patterns import DangerousPatternCatalog
from qbml.security.validator import SecurityValidator

_logger = get_logger(__name__)

EXECUTION_OPTION_KEYS: Final[tuple[str, ...]] = ("datasource", "timeout", "username", "password")
DEFAULT_EXECUTOR: Final[str] = "get"
DEFAULT_PAGE_SIZE: Final[int] = 25
ROW_SET_EXECUTORS: Final[frozenset[str]] = frozenset({"get", "values"})
PAGINATING_EXECUTORS: Final[frozenset[str]] = frozenset({"paginate", "simplePaginate"})
# Bases that set an explicit row limit; a configured ceiling never overrides them.
LIMITING_ACTIONS: Final[frozenset[str]] = frozenset({"limit", "take", "forPage"})
ON_CLAUSE_KEYS: Final[tuple[str, ...]] = ("on", "andOn", "orOn")
COUNT_ACTIONS: Final[frozenset[str]] = frozenset({"limit", "take", "offset", "skip"})
AGGREGATE_COLUMN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][\w.]*$")

Handler = Callable[[QueryBuilder, NormalizedAction, list[Any], Mapping[str, Any], "BuildContext"], QueryBuilder]


@dataclass(frozen=True, slots=True)
class BuildContext:
    """Per-call state captured by continuations."""

    params: Mapping[str, Any] = field(default_factory=dict)
    cte_aliases: frozenset[str] = frozenset()
    applied: set[str] | None = None

    def nested(self, aliases: set[str] | frozenset[str]) -> BuildContext:
        """Context for a nested definition: more CTE names, no top-level tracking."""
        return replace(self, cte_aliases=self.cte_aliases | frozenset(aliases), applied=None)


@dataclass(frozen=True, slots=True)
class ExecutorCall:
    """Terminal executor parsed from a query definition."""

    name: str
    value: Any = True
    options: dict[str, Any] = field(default_factory=dict)
    return_format: Any = None


class QBML:
    """Interpreter for QBML query definitions.

    Args:
        builder_factory: Zero-argument callable returning a fresh ``QueryBuilder``
        config: Security policy, table aliases and execution defaults
        registry: Shared action registry (one is built when omitted)
        catalog: Dangerous-pattern catalog overriding the configured one

    Example:
        >>> qbml = QBML(lambda: SqlAlchemyQueryBuilder(engine))
        >>> qbml.execute([{"from": "users"}, {"select": ["id"]}, {"get": True}])
    """

    def __init__(
        self,
        builder_factory: Callable[[], QueryBuilder],
        config: QBMLConfig | None = None,
        *,
        registry: ActionRegistry | None = None,
        catalog: DangerousPatternCatalog | None = None,
    ) -> None:
        self.config = config or QBMLConfig()
        self.registry = registry or ActionRegistry()
        self.validator = SecurityValidator(self.config, self.registry, catalog)
        self.conditions = ConditionEvaluator()
        self._builder_factory = builder_factory
        self._handlers: Mapping[str, Handler] = self._build_handlers()

    # ---- public API -------------------------------------------------------
    def validate(self, query: Any) -> ValidationResult:
        """Run the whole-tree security check without touching a builder."""
        return self.validator.validate_query(query)

    def build(self, query: Sequence[Any], params: Mapping[str, Any] | None = None) -> QueryBuilder:
        """Validate ``query`` and apply its actions to a fresh builder.

        Executor items are ignored; use ``execute`` to run one.

        Raises:
            SecurityViolationError: If the pre-flight check fails
            QBMLError: For any per-action rejection or malformed nested query
        """
        self._preflight(query)
        builder, _ = self._build_root(query, params or {})
        return builder

    def to_sql(self, query: Sequence[Any], params: Mapping[str, Any] | None = None) -> str:
        """Return the SQL the builder would run for ``query``."""
        return self.build(query, params).to_sql()

    def execute(
        self, query: Sequence[Any], options: ExecuteOptions | Mapping[str, Any] | None = None
    ) -> Any:
        """Assemble ``query``, run its executor and shape the result.

        Args:
            query: Query definition; ``get`` is used when it has no executor
            options: ``params``, ``returnFormat``, ``datasource``, ``timeout``,
                ``username``, ``password``; caller values take priority

        Returns:
            Executor result after return-format shaping

        Raises:
            SecurityViolationError: If the pre-flight check fails
            ExecutorNotAllowedError: If the executor is blocked by policy
            QBMLError: For any other definition or return-format failure
        """
        opts = _options(options)
        started = time.perf_counter()
        self._preflight(query)

        call, parsed = self.resolve_executor(query, opts)
        check = self.validator.validate_executor(call.name)
        if not check.valid:
            raise ExecutorNotAllowedError(check.message)
        executor = self.registry.canonical_executor(call.name) or call.name
        _logger.info("QBML execute start: executor=%s format=%s", executor, parsed.format)

        builder, applied = self._build_root(query, opts.params)
        merged = self._merge_options(call, opts)
        result = self._run_executor(builder, executor, call, merged, parsed, applied)

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        _logger.info("QBML execute finished: executor=%s elapsed_ms=%.1f", executor, elapsed_ms)
        return result

    def resolve_executor(
        self, query: Sequence[Any], options: ExecuteOptions | Mapping[str, Any] | None = None
    ) -> tuple[ExecutorCall, ParsedFormat]:
        """Return the executor ``query`` would run and its effective return format.

        Raises:
            InvalidReturnFormatError: If the effective format is unknown
            InvalidColumnKeyError: If a struct format has no column key
        """
        opts = _options(options)
        call = self._parse_executor(query, opts.params)
        return call, tabular.parse_format(self._resolve_return_format(call, opts))

    # ---- pre-flight -------------------------------------------------------------
    def _preflight(self, query: Any) -> None:
        result = self.validator.validate_query(query)
        if not result.valid:
            raise SecurityViolationError(result.message)

    def _build_root(
        self, query: Sequence[Any], params: Mapping[str, Any]
    ) -> tuple[QueryBuilder, set[str]]:
        applied: set[str] = set()
        ctx = BuildContext(
            params=dict(params),
            cte_aliases=frozenset(self.validator.collect_cte_aliases(query)),
            applied=applied,
        )
        return self._assemble(self._builder_factory(), query, ctx), applied

    # ---- assembly ---------------------------------------------------------------
    def _action_key(self, item: Mapping[str, Any]) -> str | None:
        for key in item:
            if isinstance(key, str) and key not in AUXILIARY_KEYS and self.registry.is_valid_action(key):
                return key
        return None

    def _is_executor_item(self, item: Mapping[str, Any]) -> bool:
        return any(isinstance(key, str) and self.registry.is_valid_executor(key) for key in item)

    def _assemble(self, builder: QueryBuilder, items: Sequence[Any], ctx: BuildContext) -> QueryBuilder:
        body: list[Mapping[str, Any]] = []
        for item in items:
            if not isinstance(item, Mapping):
                continue
            key = self._action_key(item)
            if key is None:
                if not self._is_executor_item(item):
                    _logger.debug("Skipping item without a recognized action: %s", list(item))
                continue
            if self.registry.normalize(key).base_action in CTE_ACTIONS:
                builder = self._apply_item(builder, item, ctx)
            else:
                body.append(item)

        for item in body:
            builder = self._apply_item(builder, item, ctx)
        return builder

    def _apply_item(self, builder: QueryBuilder, item: Mapping[str, Any], ctx: BuildContext) -> QueryBuilder:
        key = self._action_key(item)
        if key is None:
            return builder
        action = self.registry.normalize(key)
        value = item[key]

        if "when" in item:
            gate_args = (
                [] if value is True
                else to_positional(action.base_action, resolve_param_refs(value, ctx.params))
            )
            if not self.conditions.evaluate(item["when"], gate_args, ctx.params):
                return self._apply_else(builder, item.get("else"), ctx)

        check = self.validator.validate_action(key)
        if not check.valid:
            raise ActionNotAllowedError(check.message)

        if action.base_action == "where" and ("clauses" in item or is_action_list(value)):
            nested = item["clauses"] if "clauses" in item else value
            _logger.debug("Dispatch %s as nested group", key)
            return builder.where_nested(key, self._continuation(nested, ctx))

        resolved = resolve_param_refs(value, ctx.params)
        if contains_raw_refs(resolved):
            resolved = resolve_raw_refs(resolved, builder, self.validator)
        args = [] if resolved is True else strip_missing(to_positional(action.base_action, resolved))

        handler = self._handlers.get(action.base_action)
        if handler is None:
            _logger.debug("No handler for %s; skipping", key)
            return builder
        if action.base_action in COUNT_ACTIONS and not _has_count(args):
            _logger.debug("Skip %s without a row count", key)
            return builder
        _logger.debug("Dispatch %s (base=%s)", key, action.base_action)
        if ctx.applied is not None:
            ctx.applied.add(action.base_action)
        return handler(builder, action, args, item, ctx)

    def _apply_else(self, builder: QueryBuilder, other: Any, ctx: BuildContext) -> QueryBuilder:
        if other is None:
            return builder
        items = [other] if isinstance(other, Mapping) else other
        if not isinstance(items, list):
            return builder
        for item in items:
            if isinstance(item, Mapping):
                builder = self._apply_item(builder, item, ctx)
        return builder

    # ---- continuations ----------------------------------------------------------
    def _continuation(self, query: Sequence[Any], ctx: BuildContext) -> SubQuery:
        return partial(self._build_sub, query, ctx)

    def _build_sub(self, query: Sequence[Any], ctx: BuildContext, sub: QueryBuilder) -> QueryBuilder:
        return self._assemble(sub, query, ctx.nested(self.validator.collect_cte_aliases(query)))

    def _apply_on_clauses(
        self, clauses: Any, ctx: BuildContext, builder: QueryBuilder, join: JoinClause
    ) -> JoinClause:
        if isinstance(clauses, Mapping):
            clauses = [clauses]
        elif isinstance(clauses, list) and clauses and not isinstance(clauses[0], Mapping):
            clauses = [{"on": clauses}]
        for clause in clauses or []:
            if not isinstance(clause, Mapping):
                continue
            for key in ON_CLAUSE_KEYS:
                if key not in clause:
                    continue
                value = resolve_param_refs(clause[key], ctx.params)
                if contains_raw_refs(value):
                    value = resolve_raw_refs(value, builder, self.validator)
                if isinstance(value, Mapping):
                    value = [value.get("first"), value.get("operator", "="), value.get("second")]
                args = strip_missing(list(value) if isinstance(value, list) else [value])
                if len(args) == 2:
                    args = [args[0], "=", args[1]]
                join = join.on(key, *args)
        return join

    # ---- handlers ---------------------------------------------------------------
    def _build_handlers(self) -> Mapping[str, Handler]:
        handlers: dict[str, Handler] = {
            "from": self._from,
            "table": self._from,
            "fromRaw": self._from_raw,
            "fromSub": self._from_sub,
            "select": lambda b, a, args, _i, _c: b.select(a.qb_method, args[0] if args else "*"),
            "addSelect": lambda b, a, args, _i, _c: b.select(a.qb_method, args[0] if args else "*"),
            "distinct": lambda b, _a, _args, _i, _c: b.distinct(),
            "selectRaw": self._select_raw,
            "subSelect": self._sub_select,
            "where": lambda b, a, args, _i, _c: b.where(a.qb_method, *args),
            "whereIn": self._where_in,
            "whereBetween": lambda b, a, args, _i, _c: b.where_between(a.qb_method, *_pad(args, 3)),
            "whereLike": lambda b, a, args, _i, _c: b.where_like(a.qb_method, *_pad(args, 2)),
            "whereNull": lambda b, a, args, _i, _c: b.where_null(a.qb_method, *_pad(args, 1)),
            "whereColumn": self._where_column,
            "whereExists": self._where_exists,
            "whereRaw": self._where_raw,
            "crossJoin": self._cross_join,
            "groupBy": lambda b, _a, args, _i, _c: b.group_by(args[0] if len(args) == 1 else args),
            "having": lambda b, a, args, _i, _c: b.having(a.qb_method, *args),
            "havingRaw": self._having_raw,
            "orderBy": self._order_by,
            "orderByAsc": lambda b, _a, args, _i, _c: b.order_by(*_pad(args, 1), "asc"),
            "orderByDesc": lambda b, _a, args, _i, _c: b.order_by(*_pad(args, 1), "desc"),
            "orderByRaw": self._order_by_raw,
            "reorder": lambda b, _a, _args, _i, _c: b.reorder(),
            "clearOrders": lambda b, _a, _args, _i, _c: b.clear_orders(),
            "limit": lambda b, _a, args, _i, _c: b.limit(int(args[0])),
            "take": lambda b, _a, args, _i, _c: b.limit(int(args[0])),
            "offset": lambda b, _a, args, _i, _c: b.offset(int(args[0])),
            "skip": lambda b, _a, args, _i, _c: b.offset(int(args[0])),
            "forPage": self._for_page,
            "with": self._with,
            "withRecursive": self._with,
            "union": self._union,
            "unionAll": self._union,
        }
        for name in ("selectCount", "selectSum", "selectAvg", "selectMin", "selectMax"):
            handlers[name] = self._select_aggregate
        for name in JOIN_ACTIONS:
            if name != "crossJoin":
                handlers[name] = self._join
        for name in JOIN_SUB_ACTIONS:
            handlers[name] = self._join_sub
        for name in JOIN_RAW_ACTIONS:
            handlers[name] = self._join_raw
        for name in LOCK_ACTIONS:
            handlers[name] = lambda b, a, args, _i, _c: b.lock(a.qb_method, *args)
        return handlers

    # sources
    def _checked_table(self, table: Any, ctx: BuildContext) -> Any:
        if not isinstance(table, str):
            return table
        result = self.validator.validate_table(table, ctx.cte_aliases)
        if not result.valid:
            raise InvalidTableError(result.message)
        return result.resolved

    def _checked_raw(self, sql: Any) -> Any:
        if isinstance(sql, str):
            result = self.validator.validate_raw_expression(sql)
            if not result.valid:
                raise InvalidRawExpressionError(result.message, matched_pattern=result.matched_pattern)
        return sql

    def _from(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        return builder.from_(self._checked_table(args[0] if args else None, ctx))

    def _from_raw(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        sql, bindings = _raw_args(args)
        return builder.from_raw(self._checked_raw(sql), bindings)

    def _from_sub(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        alias, query = _alias_of(args, item), item.get("query")
        if not alias or not isinstance(query, list):
            msg = f"{action.qb_method} requires an alias and a nested query"
            raise InvalidFromSubError(msg)
        return builder.from_sub(alias, self._continuation(query, ctx))

    # projection
    def _select_raw(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        sql, bindings = _raw_args(args)
        return builder.select_raw(self._checked_raw(sql), bindings)

    def _sub_select(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        alias, query = _alias_of(args, item), item.get("query")
        if not alias or not isinstance(query, list):
            msg = f"{action.qb_method} requires an alias and a nested query"
            raise InvalidSubSelectError(msg)
        return builder.sub_select(alias, self._continuation(query, ctx))

    def _select_aggregate(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        column, alias = _pad(args, 2)
        return builder.select_aggregate(action.qb_method, column, alias)

    # filters
    def _where_in(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        column = args[0] if args else None
        query = item.get("query")
        if len(args) < 2 and isinstance(query, list):
            return builder.where_in(action.qb_method, column, self._continuation(query, ctx))
        values = args[1] if len(args) > 1 else []
        return builder.where_in(action.qb_method, column, [] if values is None else values)

    def _where_column(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        if len(args) == 2:
            return builder.where_column(action.qb_method, args[0], "=", args[1])
        return builder.where_column(action.qb_method, *_pad(args, 3))

    def _where_exists(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        query = item.get("query")
        if not isinstance(query, list):
            msg = f"{action.qb_method} requires a nested query"
            raise InvalidWhereExistsError(msg)
        return builder.where_exists(action.qb_method, self._continuation(query, ctx))

    def _where_raw(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        sql, bindings = _raw_args(args)
        return builder.where_raw(action.qb_method, self._checked_raw(sql), bindings)

    # joins
    def _join(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        table = self._checked_table(args[0] if args else None, ctx)
        if "on" in item:
            conditions = partial(self._apply_on_clauses, item["on"], ctx, builder)
            return builder.join_on(action.qb_method, table, conditions)
        if len(args) == 3:
            return builder.join(action.qb_method, table, args[1], "=", args[2])
        return builder.join(action.qb_method, table, *_pad(args[1:], 3))

    def _cross_join(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        return builder.cross_join(self._checked_table(args[0] if args else None, ctx))

    def _join_sub(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        alias, query = _alias_of(args, item), item.get("query")
        if not alias or not isinstance(query, list):
            msg = f"{action.qb_method} requires an alias and a nested query"
            raise InvalidJoinSubError(msg)
        if "on" in item:
            clauses: Any = item["on"]
        elif len(args) >= 3:
            clauses = [{"on": list(args[1:4])}]
        else:
            msg = f"{action.qb_method} requires join conditions ('on' or first/operator/second)"
            raise InvalidJoinSubError(msg)
        conditions = partial(self._apply_on_clauses, clauses, ctx, builder)
        return builder.join_sub(action.qb_method, alias, self._continuation(query, ctx), conditions)

    def _join_raw(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        sql = self._checked_raw(args[0] if args else None)
        if len(args) == 3:
            return builder.join_raw(action.qb_method, sql, args[1], "=", args[2])
        return builder.join_raw(action.qb_method, sql, *_pad(args[1:], 3))

    # grouping / ordering / paging
    def _having_raw(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        sql, bindings = _raw_args(args)
        return builder.having_raw(action.qb_method, self._checked_raw(sql), bindings)

    def _order_by(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        column, direction = _pad(args, 2)
        return builder.order_by(column, direction or "asc")

    def _order_by_raw(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        sql, bindings = _raw_args(args)
        return builder.order_by_raw(self._checked_raw(sql), bindings)

    def _for_page(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        page, size = _pad(args, 2)
        return builder.for_page(int(page or 1), int(size or DEFAULT_PAGE_SIZE))

    # composition
    def _with(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        name, query = _alias_of(args, item), item.get("query")
        if not name or not isinstance(query, list):
            msg = f"{action.qb_method} requires a CTE name and a nested query"
            raise InvalidCTEError(msg)
        columns = item.get("columns")
        return builder.with_(
            action.qb_method, name, self._continuation(query, ctx),
            list(columns) if isinstance(columns, list) else None,
        )

    def _union(
        self, builder: QueryBuilder, action: NormalizedAction, args: list[Any],
        item: Mapping[str, Any], ctx: BuildContext,
    ) -> QueryBuilder:
        query = item.get("query")
        if not isinstance(query, list):
            msg = f"{action.qb_method} requires a nested query"
            raise InvalidUnionError(msg)
        return builder.union(action.qb_method, self._continuation(query, ctx))

    # ---- executors --------------------------------------------------------------
    def _parse_executor(self, query: Sequence[Any], params: Mapping[str, Any]) -> ExecutorCall:
        """Find the terminal executor item; the last one in the definition wins."""
        found: tuple[str, Mapping[str, Any]] | None = None
        for item in query:
            if not isinstance(item, Mapping):
                continue
            for key in item:
                if isinstance(key, str) and self.registry.is_valid_executor(key):
                    found = (key, item)
                    break
        if found is None:
            return ExecutorCall(name=DEFAULT_EXECUTOR)

        name, item = found
        value = strip_missing(resolve_param_refs(item[name], params))
        resolved = {
            key: strip_missing(resolve_param_refs(item[key], params))
            for key in EXECUTION_OPTION_KEYS
            if item.get(key) is not None
        }
        options = {key: option for key, option in resolved.items() if option is not None}
        declared = item.get("returnFormat")
        if isinstance(value, Mapping) and "returnFormat" in value:
            declared = value["returnFormat"]
        return ExecutorCall(name=name, value=value, options=options, return_format=declared)

    def _resolve_return_format(self, call: ExecutorCall, opts: ExecuteOptions) -> Any:
        if opts.return_format is not None:
            return opts.return_format
        if call.return_format is not None:
            return call.return_format
        return self.config.defaults.return_format

    def _merge_options(self, call: ExecutorCall, opts: ExecuteOptions) -> dict[str, Any]:
        defaults = self.config.defaults
        merged: dict[str, Any] = {
            key: value
            for key, value in (("datasource", defaults.datasource), ("timeout", defaults.timeout))
            if value is not None
        }
        merged.update(call.options)
        merged.update(opts.execution_options())
        return merged

    def _run_executor(
        self,
        builder: QueryBuilder,
        executor: str,
        call: ExecutorCall,
        options: dict[str, Any],
        parsed: ParsedFormat,
        applied: set[str],
    ) -> Any:
        max_rows = self.config.defaults.max_rows
        value = call.value

        if executor in ROW_SET_EXECUTORS and max_rows and not applied & LIMITING_ACTIONS:
            builder = builder.limit(max_rows)

        if executor == "get":
            result = builder.get({**options, "native": parsed.wants_native})
            return tabular.transform(result, parsed)
        if executor in PAGINATING_EXECUTORS:
            page, size = _paginate_args(value)
            if max_rows:
                size = min(size, max_rows)
            run = builder.paginate if executor == "paginate" else builder.simple_paginate
            envelope = run(page, size, {**options, "native": parsed.wants_native})
            return tabular.transform_paginated(envelope, parsed)
        if executor == "first":
            return builder.first(options)
        if executor == "find":
            id_value, id_column = _pad(_executor_args(executor, value), 2)
            return builder.find(id_value, id_column or "id", options)
        if executor == "exists":
            return builder.exists(options)
        if executor == "toSQL":
            return builder.to_sql()
        if executor == "dump":
            return builder.dump()
        if executor == "avg":
            return self._avg(builder, _column_arg(executor, value), options)

        column = _column_arg(executor, value)
        if executor == "count":
            return builder.count(column or "*", options)
        runner: Callable[[str, Mapping[str, Any]], Any] = getattr(builder, executor)
        return runner(column, options)

    def _avg(self, builder: QueryBuilder, column: str | None, options: Mapping[str, Any]) -> Any:
        """Average via a raw ``COALESCE(AVG(col), default)`` projection."""
        if not column:
            msg = "avg requires a column"
            raise InvalidRawExpressionError(msg)
        if not AGGREGATE_COLUMN.match(column):
            msg = f"avg column must be a plain or qualified column name, got {column!r}"
            raise InvalidRawExpressionError(msg)
        sql = f"COALESCE(AVG({column}), {self.config.avg_default}) AS aggregate"
        row = builder.select("select", [builder.raw(sql)]).first(options)
        if not row:
            return self.config.avg_default
        return row.get("aggregate", self.config.avg_default)


# ---- argument helpers ---------------------------------------------------------
def _options(options: ExecuteOptions | Mapping[str, Any] | None) -> ExecuteOptions:
    if isinstance(options, ExecuteOptions):
        return options
    return ExecuteOptions.model_validate(options or {})


def _pad(args: Sequence[Any], size: int) -> list[Any]:
    """Return exactly ``size`` arguments, padding with ``None``."""
    out = list(args[:size])
    out.extend([None] * (size - len(out)))
    return out


def _has_count(args: Sequence[Any]) -> bool:
    return bool(args) and args[0] is not None and not isinstance(args[0], bool)


def _raw_args(args: Sequence[Any]) -> tuple[Any, list[Any] | None]:
    sql, bindings = _pad(args, 2)
    if bindings is not None and not isinstance(bindings, list):
        bindings = [bindings]
    return sql, bindings or None


def _alias_of(args: Sequence[Any], item: Mapping[str, Any]) -> str | None:
    if args and isinstance(args[0], str) and args[0]:
        return args[0]
    alias = item.get("alias")
    return alias if isinstance(alias, str) and alias else None


def _executor_args(executor: str, value: Any) -> list[Any]:
    if value is True or value is None:
        return []
    return to_positional(executor, value)


def _column_arg(executor: str, value: Any) -> str | None:
    args = _executor_args(executor, value)
    column = args[0] if args else None
    return column if isinstance(column, str) else None


def _paginate_args(value: Any) -> tuple[int, int]:
    page: Any = 1
    size: Any = DEFAULT_PAGE_SIZE
    if isinstance(value, Mapping):
        page = value.get("page", page)
        size = value.get("maxRows", value.get("size", size))
    elif isinstance(value, list):
        page, size = (_pad(value, 2)[0] or page), (_pad(value, 2)[1] or size)
    return int(page or 1), int(size or DEFAULT_PAGE_SIZE)


__all__ = ["QBML", "BuildContext", "ExecutorCall"]
