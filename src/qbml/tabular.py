"""Result shaping: array, native query, tabular and keyed-struct formats.

Tabular format is the compact wire encoding::

    {"columns": [{"name": "id", "type": "integer"}, ...], "rows": [[1, "Alice"], ...]}

Row arrays are converted with a three-pass type inference:

1. Tally a detected type for every cell of every row
2. Resolve one type per column using promotion rules
3. Flatten each row into a positional list in column order

Native result sets skip inference and map the collaborator's own type names.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
import re
from typing import Any, Final, get_args
from uuid import UUID

from fastmcp.utilities.logging import get_logger

from qbml.exceptions import (
    InvalidColumnKeyError,
    InvalidReturnFormatError,
    InvalidValueKeyError,
)
from qbml.models import (
    ColumnType,
    FormatName,
    NativeResultSet,
    ParsedFormat,
    TabularColumn,
    TabularResult,
)

_logger = get_logger(__name__)

FORMATS: Final[frozenset[str]] = frozenset(get_args(FormatName))
INT32_MAX: Final[int] = 2_147_483_647
NUMERIC_TYPES: Final[frozenset[str]] = frozenset({"integer", "bigint", "decimal"})

UUID_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
ISO_DATE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2})?)?")

# Ordered: first fragment found in the lowercased native type name wins.
NATIVE_TYPE_MAP: Final[tuple[tuple[str, ColumnType], ...]] = (
    ("uuid", "uuid"),
    ("uniqueidentifier", "uuid"),
    ("bigint", "bigint"),
    ("int8", "bigint"),
    ("bigserial", "bigint"),
    ("bool", "boolean"),
    ("bit", "boolean"),
    ("timestamp", "datetime"),
    ("datetime", "datetime"),
    ("date", "datetime"),
    ("time", "datetime"),
    ("interval", "varchar"),
    ("json", "object"),
    ("array", "array"),
    ("[]", "array"),
    ("blob", "binary"),
    ("binary", "binary"),
    ("bytea", "binary"),
    ("image", "binary"),
    ("int", "integer"),
    ("serial", "integer"),
    ("decimal", "decimal"),
    ("numeric", "decimal"),
    ("money", "decimal"),
    ("float", "decimal"),
    ("double", "decimal"),
    ("real", "decimal"),
    ("char", "varchar"),
    ("text", "varchar"),
    ("clob", "varchar"),
    ("string", "varchar"),
)


# ---- format parsing ------------------------------------------------------
def parse_format(fmt: Any) -> ParsedFormat:
    """Parse ``"array"`` / ``"tabular"`` / ``["struct", "id", ["name"]]``.

    Raises:
        InvalidReturnFormatError: For an unknown format name
        InvalidColumnKeyError: For ``struct`` without a column key
    """
    if fmt is None:
        return ParsedFormat(format="array")
    if isinstance(fmt, ParsedFormat):
        return fmt

    column_key: str | None = None
    value_keys: tuple[str, ...] = ()
    if isinstance(fmt, list | tuple):
        if not fmt:
            return ParsedFormat(format="array")
        name = fmt[0]
        if len(fmt) > 1 and fmt[1] is not None:
            column_key = str(fmt[1])
        if len(fmt) > 2 and fmt[2] is not None:
            raw_keys = fmt[2]
            value_keys = (
                (str(raw_keys),)
                if isinstance(raw_keys, str)
                else tuple(str(k) for k in raw_keys)
            )
    else:
        name = fmt

    if not isinstance(name, str) or name.strip().lower() not in FORMATS:
        msg = f"Unknown return format {name!r}; expected one of {sorted(FORMATS)}"
        raise InvalidReturnFormatError(msg)
    normalized = name.strip().lower()
    if normalized == "struct" and not column_key:
        msg = "The struct return format requires a column key: ['struct', columnKey]"
        raise InvalidColumnKeyError(msg)
    return ParsedFormat(format=normalized, column_key=column_key, value_keys=value_keys)  # type: ignore[arg-type]


# ---- type inference --------------------------------------------------------
def detect_type(value: Any) -> str:
    """Detect the tabular type of a single cell.

    ``bool`` is checked before ``int`` because it is an ``int`` subclass.
    Returns ``"null"`` or ``"query"`` in addition to the wire vocabulary.
    """
    if value is None or (isinstance(value, str) and value == ""):
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, NativeResultSet | TabularResult) or is_tabular(value):
        return "query"
    if isinstance(value, list | tuple):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, datetime | date | time):
        return "datetime"
    if isinstance(value, int):
        return "bigint" if abs(value) > INT32_MAX else "integer"
    if isinstance(value, float | Decimal):
        return "decimal"
    if isinstance(value, UUID):
        return "uuid"
    if isinstance(value, bytes | bytearray | memoryview):
        return "binary"
    if isinstance(value, str):
        if UUID_PATTERN.match(value):
            return "uuid"
        if ISO_DATE_PATTERN.match(value) and _parses_as_datetime(value):
            return "datetime"
    return "varchar"


def _parses_as_datetime(value: str) -> bool:
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def resolve_column_type(counts: Mapping[str, int]) -> ColumnType:
    """Resolve one column type from per-type tallies.

    Rules: nulls are ignored; a single type wins outright; integer with
    decimal becomes decimal; integer with bigint becomes bigint; numeric
    mixed with varchar becomes varchar; otherwise the most frequent type wins.
    """
    types = {("object" if t == "query" else t): 0 for t in counts if t != "null"}
    for t, n in counts.items():
        if t != "null":
            types["object" if t == "query" else t] += n
    if not types:
        return "varchar"
    if len(types) == 1:
        return next(iter(types))  # type: ignore[return-value]

    keys = set(types)
    if keys <= NUMERIC_TYPES:
        return "decimal" if "decimal" in keys else "bigint"
    if keys & NUMERIC_TYPES and "varchar" in keys:
        return "varchar"

    best, best_count = "varchar", 0
    for t, n in types.items():
        if n > best_count:
            best, best_count = t, n
    return best  # type: ignore[return-value]


def map_native_type(type_name: str | None) -> ColumnType:
    """Map a collaborator type name (``INTEGER``, ``VARCHAR(20)``, ``int8``...)."""
    if not type_name:
        return "varchar"
    lowered = type_name.lower()
    for fragment, mapped in NATIVE_TYPE_MAP:
        if fragment in lowered:
            return mapped
    return "varchar"


# ---- conversions -------------------------------------------------------------
def from_array(rows: Sequence[Mapping[str, Any]]) -> TabularResult:
    """Convert row dicts to tabular form with deep type inference."""
    if not rows:
        return TabularResult()

    names: list[str] = []
    seen: set[str] = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                names.append(key)

    # pass 1: tally
    tallies: dict[str, dict[str, int]] = {name: {} for name in names}
    for row in rows:
        for name in names:
            detected = detect_type(row.get(name))
            tallies[name][detected] = tallies[name].get(detected, 0) + 1

    # pass 2: resolve
    columns = [TabularColumn(name=name, type=resolve_column_type(tallies[name])) for name in names]

    # pass 3: flatten
    flat = [[row.get(name) for name in names] for row in rows]
    return TabularResult(columns=columns, rows=flat)


def from_native(result: NativeResultSet) -> TabularResult:
    """Convert a collaborator result set without re-inferring types."""
    columns = [
        TabularColumn(name=name, type=map_native_type(type_name))
        for name, type_name in result.columns
    ]
    return TabularResult(columns=columns, rows=[list(row) for row in result.rows])


def to_array(tabular: TabularResult | Mapping[str, Any]) -> list[dict[str, Any]]:
    """Convert tabular data (model or wire dict) back to row dicts."""
    if isinstance(tabular, Mapping):
        if not is_tabular(tabular):
            return []
        tabular = TabularResult.model_validate(tabular)
    names = [col.name for col in tabular.columns]
    if not names:
        return []
    return [dict(zip(names, row, strict=False)) for row in tabular.rows]


def to_keyed_struct(
    rows: Sequence[Mapping[str, Any]],
    column_key: str,
    value_keys: Sequence[str] | None = None,
) -> dict[Any, Any]:
    """Key rows by ``column_key``.

    Without ``value_keys`` each entry is the full row; one value key yields a
    scalar; several yield a sub-dict. Later rows overwrite earlier ones on
    duplicate keys.

    Raises:
        InvalidColumnKeyError: If ``column_key`` is not a column of the rows
        InvalidValueKeyError: If any value key is not a column of the rows
    """
    if not rows:
        return {}
    available = list(rows[0].keys())
    if column_key not in rows[0]:
        msg = f"Column key '{column_key}' not found in result columns: {available}"
        raise InvalidColumnKeyError(msg)
    keys = list(value_keys or ())
    for key in keys:
        if key not in rows[0]:
            msg = f"Value key '{key}' not found in result columns: {available}"
            raise InvalidValueKeyError(msg)

    out: dict[Any, Any] = {}
    for row in rows:
        if not keys:
            out[row[column_key]] = dict(row)
        elif len(keys) == 1:
            out[row[column_key]] = row.get(keys[0])
        else:
            out[row[column_key]] = {key: row.get(key) for key in keys}
    return out


# ---- format application ------------------------------------------------------
def _rows_of(data: Any) -> list[dict[str, Any]] | None:
    if isinstance(data, NativeResultSet):
        return data.as_dicts()
    if isinstance(data, TabularResult) or is_tabular(data):
        return to_array(data)
    if isinstance(data, list) and all(isinstance(row, Mapping) for row in data):
        return [dict(row) for row in data]
    return None


def transform(data: Any, parsed: ParsedFormat) -> Any:
    """Apply a parsed return format to an executor result.

    Non-row results (scalars, single rows) pass through unchanged.
    """
    fmt = parsed.format
    _logger.debug("Shaping %s result as %s", type(data).__name__, fmt)
    if fmt == "query":
        return data
    if fmt == "tabular":
        if isinstance(data, NativeResultSet):
            return from_native(data).to_wire()
        if isinstance(data, TabularResult):
            return data.to_wire()
        if is_tabular(data):
            return data
        rows = _rows_of(data)
        return from_array(rows).to_wire() if rows is not None else data

    rows = _rows_of(data)
    if rows is None:
        return data
    if fmt == "struct":
        return to_keyed_struct(rows, parsed.column_key or "", parsed.value_keys or None)
    return rows


def transform_paginated(
    envelope: Any, parsed: ParsedFormat, data_key: str = "results"
) -> Any:
    """Apply a return format to the data member of a pagination envelope, in place."""
    if isinstance(envelope, dict) and data_key in envelope:
        envelope[data_key] = transform(envelope[data_key], parsed)
    return envelope


# ---- utilities ---------------------------------------------------------------
def is_tabular(data: Any) -> bool:
    """Check whether ``data`` has the tabular wire shape."""
    return (
        isinstance(data, Mapping)
        and isinstance(data.get("columns"), list)
        and isinstance(data.get("rows"), list)
    )


def is_tabular_pagination(data: Any) -> bool:
    return (
        isinstance(data, Mapping)
        and "pagination" in data
        and is_tabular(data.get("results"))
    )


def detabulate_pagination(result: Mapping[str, Any]) -> dict[str, Any]:
    """Tabular pagination envelope -> array pagination envelope (new dict)."""
    return {"pagination": result.get("pagination"), "results": to_array(result.get("results", {}))}


def tabulate_pagination(result: Mapping[str, Any]) -> dict[str, Any]:
    """Array pagination envelope -> tabular pagination envelope (new dict)."""
    return {
        "pagination": result.get("pagination"),
        "results": from_array(result.get("results") or []).to_wire(),
    }


def get_column_names(tabular: TabularResult | Mapping[str, Any]) -> list[str]:
    model = tabular if isinstance(tabular, TabularResult) else TabularResult.model_validate(tabular)
    return [col.name for col in model.columns]


def get_column_types(tabular: TabularResult | Mapping[str, Any]) -> dict[str, str]:
    model = tabular if isinstance(tabular, TabularResult) else TabularResult.model_validate(tabular)
    return {col.name: col.type for col in model.columns}


def get_row(tabular: TabularResult | Mapping[str, Any], index: int) -> dict[str, Any] | None:
    """Return row ``index`` as a dict, or ``None`` when out of range."""
    model = tabular if isinstance(tabular, TabularResult) else TabularResult.model_validate(tabular)
    if index < 0 or index >= len(model.rows):
        return None
    return dict(zip((col.name for col in model.columns), model.rows[index], strict=False))


def get_column(tabular: TabularResult | Mapping[str, Any], name: str) -> list[Any]:
    """Return all values of column ``name``; empty when the column is unknown."""
    model = tabular if isinstance(tabular, TabularResult) else TabularResult.model_validate(tabular)
    for index, col in enumerate(model.columns):
        if col.name == name:
            return [row[index] for row in model.rows]
    return []


class ReturnFormat:
    """Facade grouping the return-format operations."""

    parse = staticmethod(parse_format)
    transform = staticmethod(transform)
    transform_paginated = staticmethod(transform_paginated)
    from_array = staticmethod(from_array)
    from_native = staticmethod(from_native)
    to_array = staticmethod(to_array)
    to_keyed_struct = staticmethod(to_keyed_struct)
