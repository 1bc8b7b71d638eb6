"""Security validation for QBML query definitions.

The validator is the single gate between caller-supplied definitions and the
query builder. It checks:
- table references against CTE aliases, the alias map and the table policy
- action and executor names against their allow/block policies
- raw SQL fragments against the dangerous-pattern catalog
- whole definitions, recursively, before any builder call is made

All methods return ``ValidationResult`` and never raise; the orchestrator
decides which exception a failed result becomes.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
import re
from typing import Any, Final

from fastmcp.utilities.logging import get_logger

from qbml.actions.arguments import AUXILIARY_KEYS, is_action_list
from qbml.actions.registry import JOIN_ACTIONS, JOIN_RAW_ACTIONS, ActionRegistry
from qbml.models import QBMLConfig, SecurityPolicy, ValidationResult
from qbml.resolver import is_param_ref, raw_sql_of
from qbml.security.patterns import DangerousPatternCatalog

_logger = get_logger(__name__)

TABLE_ACTIONS: Final[frozenset[str]] = frozenset({"from", "table", *JOIN_ACTIONS})
RAW_ACTIONS: Final[frozenset[str]] = frozenset(
    {"selectRaw", "fromRaw", "whereRaw", "havingRaw", "orderByRaw", *JOIN_RAW_ACTIONS}
)
CTE_KEYS: Final[frozenset[str]] = frozenset({"with", "withrecursive"})
SUBTREE_KEYS: Final[tuple[str, ...]] = ("query", "else", "clauses")

MAX_PREVIEW: Final[int] = 80

_TABLE_REF: Final[re.Pattern[str]] = re.compile(r"^\s*(\S+)(.*?)\s*$", re.DOTALL)


def _preview(text: str) -> str:
    return text[:MAX_PREVIEW] + ("..." if len(text) > MAX_PREVIEW else "")


def split_table_reference(reference: str) -> tuple[str, str]:
    """Split ``"users as u"`` into ``("users", " as u")``.

    The second element keeps its leading whitespace so it can be re-appended
    verbatim after alias rewriting.
    """
    m = _TABLE_REF.match(reference)
    if not m:
        return "", ""
    return m.group(1), m.group(2)


def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a policy entry; ``*`` matches within one dotted segment."""
    escaped = re.escape(pattern.strip()).replace(r"\*", r"[^.]*")
    return re.compile(rf"^{escaped}$", re.IGNORECASE)


class _CompiledPolicy:
    __slots__ = ("matchers", "mode")

    def __init__(self, policy: SecurityPolicy) -> None:
        self.mode = policy.mode
        self.matchers: tuple[re.Pattern[str], ...] = tuple(
            compile_glob(entry) for entry in policy.entries if entry.strip()
        )

    def matches(self, *names: str) -> bool:
        return any(m.match(name) for m in self.matchers for name in names if name)

    def permits(self, *names: str) -> bool:
        if self.mode == "allow":
            return self.matches(*names)
        if self.mode == "block":
            return not self.matches(*names)
        return True


class SecurityValidator:
    """Validate references and raw SQL against configured policy.

    Policies, aliases and the pattern catalog are compiled once in
    ``__init__``; instances are read-only afterwards.
    """

    def __init__(
        self,
        config: QBMLConfig | None = None,
        registry: ActionRegistry | None = None,
        catalog: DangerousPatternCatalog | None = None,
    ) -> None:
        cfg = config or QBMLConfig()
        self.registry = registry or ActionRegistry()
        self.catalog = catalog or DangerousPatternCatalog.default(cfg.security.extra_patterns)
        self._tables = _CompiledPolicy(cfg.security.tables)
        self._actions = _CompiledPolicy(cfg.security.actions)
        self._executors = _CompiledPolicy(cfg.security.executors)
        self._aliases: Mapping[str, str] = {k.lower(): v for k, v in cfg.aliases.items()}

    # ---- tables ---------------------------------------------------------
    def validate_table(self, name: str, cte_aliases: Iterable[str] = ()) -> ValidationResult:
        """Validate a table reference and resolve configured aliases.

        Args:
            name: Table reference, optionally followed by an SQL alias
                (``"users u"``, ``"users AS u"``)
            cte_aliases: Names of CTEs visible at this point of the query

        Returns:
            ValidationResult whose ``resolved`` holds the reference to use
        """
        if not isinstance(name, str):
            return ValidationResult.fail("Table reference must be a string")
        table, suffix = split_table_reference(name)
        if not table:
            return ValidationResult.fail("Table reference is empty")

        lowered = table.lower()
        if lowered in {alias.lower() for alias in cte_aliases}:
            return ValidationResult.ok(resolved=name.strip())

        actual = self._aliases.get(lowered)
        if actual is not None:
            return ValidationResult.ok(resolved=f"{actual}{suffix}")

        if not self._tables.permits(table):
            _logger.warning("Table rejected by %s policy: %s", self._tables.mode, table)
            return ValidationResult.fail(f"Table '{table}' is not permitted")
        return ValidationResult.ok(resolved=name.strip())

    # ---- actions / executors -------------------------------------------
    def validate_action(self, name: str) -> ValidationResult:
        """Validate an action name (or its base action) against the action policy."""
        if not self.registry.is_valid_action(name):
            return ValidationResult.fail(f"Unknown action '{name}'")
        base = self.registry.normalize(name).base_action
        if not self._actions.permits(name, base):
            _logger.warning("Action rejected by %s policy: %s", self._actions.mode, name)
            return ValidationResult.fail(f"Action '{name}' is not allowed")
        return ValidationResult.ok()

    def validate_executor(self, name: str) -> ValidationResult:
        """Validate an executor name against the executor policy."""
        if not self.registry.is_valid_executor(name):
            return ValidationResult.fail(f"Unknown executor '{name}'")
        if not self._executors.permits(name):
            _logger.warning("Executor rejected by %s policy: %s", self._executors.mode, name)
            return ValidationResult.fail(f"Executor '{name}' is not allowed")
        return ValidationResult.ok()

    # ---- raw SQL ----------------------------------------------------------
    def validate_raw_expression(self, expression: Any) -> ValidationResult:
        """Check a raw SQL fragment against the dangerous-pattern catalog.

        Expressions without any catalog keyword are accepted without running
        a single regex.
        """
        if expression is None:
            return ValidationResult.ok()
        text = expression if isinstance(expression, str) else str(expression)
        match = self.catalog.first_match(text)
        if match is None:
            return ValidationResult.ok()
        _logger.warning(
            "Raw expression rejected (pattern=%s, category=%s): %s",
            match.name,
            match.category,
            _preview(text),
        )
        return ValidationResult.fail(
            f"Raw expression contains a disallowed pattern ({match.category}: {match.name})",
            matched_pattern=match.name,
        )

    # ---- whole query ------------------------------------------------------
    def collect_cte_aliases(self, query: Iterable[Any]) -> set[str]:
        """Gather the names declared by ``with``/``withRecursive`` items."""
        aliases: set[str] = set()
        for item in query:
            if not isinstance(item, dict):
                continue
            for key, value in item.items():
                if not isinstance(key, str) or key.lower() not in CTE_KEYS:
                    continue
                name = value
                if isinstance(value, dict):
                    name = value.get("name") or value.get("alias")
                if isinstance(name, str) and name:
                    aliases.add(name)
        return aliases

    def validate_query(
        self, query: Any, cte_aliases: Iterable[str] = ()
    ) -> ValidationResult:
        """Validate a complete definition, recursing into nested sub-definitions.

        CTE names are collected for the whole level first, so a CTE may be
        referenced before or after its declaration.
        """
        if not isinstance(query, list):
            return ValidationResult.fail("Query definition must be an array of actions")
        aliases = set(cte_aliases) | self.collect_cte_aliases(query)
        for item in query:
            if not isinstance(item, dict):
                continue
            result = self._validate_item(item, aliases)
            if not result.valid:
                return result
        return ValidationResult.ok()

    def _validate_item(self, item: dict[str, Any], aliases: set[str]) -> ValidationResult:
        for key, value in item.items():
            if not isinstance(key, str) or key in AUXILIARY_KEYS:
                continue
            if not self.registry.is_valid_action(key):
                continue
            base = self.registry.normalize(key).base_action

            if base in TABLE_ACTIONS:
                table = _table_of(value)
                if table is not None:
                    res = self.validate_table(table, aliases)
                    if not res.valid:
                        return res

            if base in RAW_ACTIONS:
                sql = _raw_action_sql(value)
                if sql is not None:
                    res = self.validate_raw_expression(sql)
                    if not res.valid:
                        return res

            if is_action_list(value):
                res = self.validate_query(value, aliases)
                if not res.valid:
                    return res

        for key, value in item.items():
            if key in SUBTREE_KEYS:
                continue
            for sql in iter_raw_sql(value):
                res = self.validate_raw_expression(sql)
                if not res.valid:
                    return res

        for key in SUBTREE_KEYS:
            sub = item.get(key)
            if sub is None:
                continue
            if isinstance(sub, dict):
                sub = [sub]
            res = self.validate_query(sub, aliases)
            if not res.valid:
                return res
        return ValidationResult.ok()


def iter_raw_sql(value: Any) -> Iterator[str]:
    """Yield the SQL of every well-formed ``$raw`` marker inside ``value``."""
    if isinstance(value, dict):
        if "$raw" in value:
            sql = raw_sql_of(value)
            if sql is not None:
                yield sql
            return
        for key, sub in value.items():
            if key in SUBTREE_KEYS:
                continue
            yield from iter_raw_sql(sub)
    elif isinstance(value, list):
        for sub in value:
            yield from iter_raw_sql(sub)


def _table_of(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, list) and value and isinstance(value[0], str):
        return value[0]
    if isinstance(value, dict) and not is_param_ref(value):
        name = value.get("table", value.get("name"))
        return name if isinstance(name, str) else None
    return None


def _raw_action_sql(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, list) and value and isinstance(value[0], str):
        return value[0]
    if isinstance(value, dict):
        sql = value.get("sql", value.get("table"))
        return sql if isinstance(sql, str) else None
    return None
