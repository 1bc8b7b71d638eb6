"""Conversion of action values into positional builder arguments.

An action value can be written three ways::

    {"where": ["status", "=", "active"]}                       # positional
    {"where": {"column": "status", "operator": "=", "value": "active"}}  # named
    {"whereNull": "deleted_at"}                                # scalar

Positional arrays pass through, scalars become a one-element list, and named
objects are flattened through ``NAMED_ARGUMENTS``. Absent optional names are
dropped, so ``{"column": "a", "value": 1}`` becomes ``["a", 1]``.
"""

from __future__ import annotations

from typing import Any, Final

from qbml.actions.registry import JOIN_ACTIONS

AUXILIARY_KEYS: Final[frozenset[str]] = frozenset(
    {
        "when",
        "else",
        "query",
        "on",
        "clauses",
        "alias",
        "datasource",
        "timeout",
        "username",
        "password",
    }
)

# Each slot lists accepted names; the first one present wins.
_Slots = tuple[tuple[str, ...], ...]

_WHERE: Final[_Slots] = (("column",), ("operator",), ("value",))
_RAW: Final[_Slots] = (("sql",), ("bindings",))
_COLUMNS: Final[_Slots] = (("columns", "column"),)
_JOIN: Final[_Slots] = (("table",), ("first",), ("operator",), ("second",))
_AGGREGATE: Final[_Slots] = (("column",), ("alias",))
_VALUE: Final[_Slots] = (("value",),)
_COLUMN: Final[_Slots] = (("column",),)
_JOIN_RAW: Final[_Slots] = (("table", "sql"), ("first",), ("operator",), ("second",))

NAMED_ARGUMENTS: Final[dict[str, _Slots]] = {
    "from": (("table", "name"),),
    "table": (("table", "name"),),
    "fromRaw": _RAW,
    "select": _COLUMNS,
    "addSelect": _COLUMNS,
    "groupBy": _COLUMNS,
    "selectRaw": _RAW,
    "selectCount": _AGGREGATE,
    "selectSum": _AGGREGATE,
    "selectAvg": _AGGREGATE,
    "selectMin": _AGGREGATE,
    "selectMax": _AGGREGATE,
    "where": _WHERE,
    "having": _WHERE,
    "whereIn": (("column",), ("values",)),
    "whereBetween": (("column",), ("start",), ("end",)),
    "whereLike": (("column",), ("value",)),
    "whereNull": _COLUMN,
    "whereColumn": (("first",), ("operator",), ("second",)),
    "whereRaw": _RAW,
    "havingRaw": _RAW,
    **{name: _JOIN for name in JOIN_ACTIONS},
    "joinRaw": _JOIN_RAW,
    "leftJoinRaw": _JOIN_RAW,
    "rightJoinRaw": _JOIN_RAW,
    "orderBy": (("column",), ("direction",)),
    "orderByAsc": _COLUMN,
    "orderByDesc": _COLUMN,
    "orderByRaw": _RAW,
    "limit": _VALUE,
    "take": _VALUE,
    "offset": _VALUE,
    "skip": _VALUE,
    "forPage": (("page",), ("size", "maxRows")),
    "with": (("name", "alias"),),
    "withRecursive": (("name", "alias"),),
    "fromSub": (("alias",),),
    "subSelect": (("alias",),),
    "joinSub": (("alias",), ("first",), ("operator",), ("second",)),
    "leftJoinSub": (("alias",), ("first",), ("operator",), ("second",)),
    "rightJoinSub": (("alias",), ("first",), ("operator",), ("second",)),
    "lock": (("type", "value"),),
    "lockForUpdate": (("skipLocked",),),
    # executors
    "find": (("id",), ("idColumn",)),
    "value": _COLUMN,
    "values": _COLUMN,
    "count": _COLUMN,
    "sum": _COLUMN,
    "avg": _COLUMN,
    "min": _COLUMN,
    "max": _COLUMN,
}

# Actions whose array value is a single list argument rather than positional args.
LIST_ARGUMENT_ACTIONS: Final[frozenset[str]] = frozenset({"select", "addSelect", "groupBy"})


def is_action_list(value: Any) -> bool:
    """True for a non-empty list of action objects (a nested where group)."""
    return (
        isinstance(value, list)
        and bool(value)
        and all(
            isinstance(item, dict) and "$param" not in item and "$raw" not in item
            for item in value
        )
    )


def to_positional(base_action: str, value: Any) -> list[Any]:
    """Convert an action value into the positional argument list for the builder."""
    if isinstance(value, list):
        if base_action in LIST_ARGUMENT_ACTIONS:
            return [value]
        return list(value)
    if isinstance(value, dict) and "$param" not in value and "$raw" not in value:
        slots = NAMED_ARGUMENTS.get(base_action)
        if slots is None:
            return [value]
        args: list[Any] = []
        for names in slots:
            for name in names:
                if name in value:
                    args.append(value[name])
                    break
        return args
    return [value]
