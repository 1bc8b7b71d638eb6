"""Action registry and name normalizer.

QBML exposes a flat string vocabulary (``where``, ``orWhereNotIn``,
``andHavingRaw`` ...). The registry generates every legal and/or/not variant
from a small set of base actions once at construction, and ``normalize``
recovers the routing triple (base action, combinator, negation) from any
variant in constant time.

The original action string is never rewritten: ``NormalizedAction.qb_method``
is the input, and that is what gets handed to the builder.
"""

from __future__ import annotations

from collections.abc import Mapping
import re
from types import MappingProxyType
from typing import Final

from qbml.models import Combinator, NormalizedAction

SOURCE_ACTIONS: Final[tuple[str, ...]] = ("from", "table", "fromSub", "fromRaw")
SELECT_ACTIONS: Final[tuple[str, ...]] = (
    "select",
    "addSelect",
    "distinct",
    "selectRaw",
    "subSelect",
    "selectCount",
    "selectSum",
    "selectAvg",
    "selectMin",
    "selectMax",
)
WHERE_ACTIONS: Final[tuple[str, ...]] = (
    "where",
    "whereIn",
    "whereBetween",
    "whereLike",
    "whereNull",
    "whereColumn",
    "whereExists",
    "whereRaw",
)
JOIN_ACTIONS: Final[tuple[str, ...]] = (
    "join",
    "innerJoin",
    "leftJoin",
    "rightJoin",
    "leftOuterJoin",
    "rightOuterJoin",
    "crossJoin",
)
JOIN_SUB_ACTIONS: Final[tuple[str, ...]] = ("joinSub", "leftJoinSub", "rightJoinSub")
JOIN_RAW_ACTIONS: Final[tuple[str, ...]] = ("joinRaw", "leftJoinRaw", "rightJoinRaw")
GROUP_ACTIONS: Final[tuple[str, ...]] = ("groupBy", "having", "havingRaw")
ORDER_ACTIONS: Final[tuple[str, ...]] = (
    "orderBy",
    "orderByAsc",
    "orderByDesc",
    "orderByRaw",
    "reorder",
    "clearOrders",
)
PAGING_ACTIONS: Final[tuple[str, ...]] = ("limit", "take", "offset", "skip", "forPage")
LOCK_ACTIONS: Final[tuple[str, ...]] = (
    "lock",
    "lockForUpdate",
    "sharedLock",
    "noLock",
    "clearLock",
)
CTE_ACTIONS: Final[tuple[str, ...]] = ("with", "withRecursive")
UNION_ACTIONS: Final[tuple[str, ...]] = ("union", "unionAll")

BASE_ACTIONS: Final[tuple[str, ...]] = (
    *SOURCE_ACTIONS,
    *SELECT_ACTIONS,
    *WHERE_ACTIONS,
    *JOIN_ACTIONS,
    *JOIN_SUB_ACTIONS,
    *JOIN_RAW_ACTIONS,
    *GROUP_ACTIONS,
    *ORDER_ACTIONS,
    *PAGING_ACTIONS,
    *LOCK_ACTIONS,
    *CTE_ACTIONS,
    *UNION_ACTIONS,
)

# Bases that accept an and/or prefix.
COMBINATOR_ACTIONS: Final[tuple[str, ...]] = (*WHERE_ACTIONS, "having", "havingRaw")

# Bases that accept a ``Not`` infix (whereIn -> whereNotIn).
NEGATABLE_ACTIONS: Final[tuple[str, ...]] = (
    "whereIn",
    "whereBetween",
    "whereLike",
    "whereNull",
    "whereExists",
)

EXECUTORS: Final[tuple[str, ...]] = (
    "get",
    "first",
    "find",
    "value",
    "values",
    "count",
    "sum",
    "avg",
    "min",
    "max",
    "exists",
    "paginate",
    "simplePaginate",
    "toSQL",
    "dump",
)

_COMBINATOR_PREFIX: Final[re.Pattern[str]] = re.compile(r"^(and|or)(?=[A-Z])")


def _capitalize(name: str) -> str:
    return name[:1].upper() + name[1:]


def _negate(base: str) -> str:
    """whereIn -> whereNotIn."""
    return "whereNot" + base[len("where") :]


class ActionRegistry:
    """Immutable lookup tables of valid actions and executors.

    All tables are built in ``__init__`` and exposed read-only, so one
    registry can be shared by every interpreter in the process.
    """

    __slots__ = ("_actions", "_base_lookup", "_executors", "_negated", "_variants")

    def __init__(self) -> None:
        variants: dict[str, str] = {}
        for base in COMBINATOR_ACTIONS:
            for prefix in ("and", "or"):
                variants[prefix + _capitalize(base)] = base

        negated: dict[str, str] = {}
        for base in NEGATABLE_ACTIONS:
            negated_name = _negate(base)
            negated[negated_name] = base
            for prefix in ("and", "or"):
                negated[prefix + _capitalize(negated_name)] = base

        actions: dict[str, str] = {name: name for name in BASE_ACTIONS}
        actions.update(variants)
        actions.update(negated)

        # Case-insensitive views: lowercase name -> canonical spelling.
        self._actions: Mapping[str, str] = MappingProxyType(
            {name.lower(): name for name in actions}
        )
        self._base_lookup: Mapping[str, str] = MappingProxyType(
            {name.lower(): name for name in BASE_ACTIONS}
        )
        self._variants: Mapping[str, str] = MappingProxyType(variants)
        self._negated: Mapping[str, str] = MappingProxyType(negated)
        self._executors: Mapping[str, str] = MappingProxyType(
            {name.lower(): name for name in EXECUTORS}
        )

    # ---- lookups --------------------------------------------------------
    def is_valid_action(self, name: str) -> bool:
        return isinstance(name, str) and name.lower() in self._actions

    def is_valid_executor(self, name: str) -> bool:
        return isinstance(name, str) and name.lower() in self._executors

    def canonical_action(self, name: str) -> str | None:
        """Return the canonical spelling of an action, or ``None`` if unknown."""
        return self._actions.get(name.lower())

    def canonical_executor(self, name: str) -> str | None:
        """Return the canonical spelling of an executor, or ``None`` if unknown."""
        return self._executors.get(name.lower())

    @property
    def combinator_variants(self) -> Mapping[str, str]:
        return self._variants

    @property
    def negated_variants(self) -> Mapping[str, str]:
        return self._negated

    # ---- normalization --------------------------------------------------
    def normalize(self, name: str) -> NormalizedAction:
        """Split an action name into its routing parts.

        The and/or prefix is only stripped on a camelCase boundary, so
        ``orderBy`` stays ``orderBy`` while ``orWhere`` becomes ``where``.

        Example:
            >>> ActionRegistry().normalize("orWhereNotIn")
            NormalizedAction(base_action='whereIn', combinator='or', negated=True, qb_method='orWhereNotIn')
        """
        residual = self._actions.get(name.lower(), name)
        combinator: Combinator = ""
        m = _COMBINATOR_PREFIX.match(residual)
        if m:
            combinator = "and" if m.group(1) == "and" else "or"
            residual = residual[m.end() :]
            residual = residual[:1].lower() + residual[1:]

        negated = False
        lowered = residual.lower()
        if lowered.startswith("wherenot") and not lowered.startswith("wherenull"):
            negated = True
            residual = residual[: len("where")] + residual[len("whereNot") :]

        base = self._base_lookup.get(residual.lower(), residual)
        return NormalizedAction(
            base_action=base, combinator=combinator, negated=negated, qb_method=name
        )


__all__ = [
    "BASE_ACTIONS",
    "COMBINATOR_ACTIONS",
    "EXECUTORS",
    "JOIN_ACTIONS",
    "JOIN_RAW_ACTIONS",
    "JOIN_SUB_ACTIONS",
    "NEGATABLE_ACTIONS",
    "ActionRegistry",
]
