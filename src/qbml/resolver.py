"""Parameter and raw-expression resolution.

Action values may carry two kinds of markers:
- ``{"$param": "name"}``: replaced by the runtime parameter value
- ``{"$raw": "sql"}`` or ``{"$raw": {"sql": ..., "bindings": [...]}}``:
  validated, then wrapped in the builder's raw-expression handle

Strings are also scanned for ``$name$`` templates. Resolution always returns
new containers; the caller's definition is never mutated.

A parameter that is not supplied resolves to ``MISSING`` rather than
``None`` so that "not supplied" and "supplied as null" stay distinguishable
through condition evaluation. ``strip_missing`` turns it into ``None`` at the
builder boundary.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
import re
from typing import TYPE_CHECKING, Any, Final

from qbml.exceptions import InvalidRawError, InvalidRawExpressionError

if TYPE_CHECKING:
    from qbml.builder.protocol import QueryBuilder
    from qbml.security.validator import SecurityValidator

TEMPLATE_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$([A-Za-z_]\w*)\$")


class _Missing:
    """Sentinel for a parameter that was not supplied."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"

    def __reduce__(self) -> str:
        return "MISSING"


MISSING: Final = _Missing()


# ---- marker shapes -------------------------------------------------------
def is_param_ref(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("$param"), str)


def is_raw_ref(value: Any) -> bool:
    return isinstance(value, dict) and "$raw" in value


def raw_sql_of(marker: Mapping[str, Any]) -> str | None:
    """Return the SQL of a ``$raw`` marker, or ``None`` if it is malformed."""
    raw = marker.get("$raw")
    if isinstance(raw, str):
        return raw
    if isinstance(raw, Mapping) and isinstance(raw.get("sql"), str):
        return raw["sql"]
    return None


# ---- parameters ----------------------------------------------------------
def lookup_param(params: Mapping[str, Any] | None, name: str) -> Any:
    """Read boundary for the parameter map: absent names yield ``MISSING``."""
    if not params or name not in params:
        return MISSING
    return params[name]


def _is_scalar(value: Any) -> bool:
    return isinstance(value, str | int | float | Decimal) and value is not MISSING


def _render_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def interpolate(text: str, params: Mapping[str, Any] | None) -> str:
    """Substitute ``$name$`` templates with scalar parameter values.

    Unknown names and non-scalar values are left verbatim.
    """
    if "$" not in text or not params:
        return text

    def _sub(m: re.Match[str]) -> str:
        value = lookup_param(params, m.group(1))
        if value is MISSING or not _is_scalar(value):
            return m.group(0)
        return _render_scalar(value)

    return TEMPLATE_PATTERN.sub(_sub, text)


def resolve_param_refs(value: Any, params: Mapping[str, Any] | None) -> Any:
    """Recursively replace ``$param`` markers and ``$name$`` templates.

    Lists are resolved element-wise and dicts value-wise (keys untouched).
    """
    if isinstance(value, dict):
        if is_param_ref(value):
            return lookup_param(params, value["$param"])
        return {key: resolve_param_refs(sub, params) for key, sub in value.items()}
    if isinstance(value, list):
        return [resolve_param_refs(sub, params) for sub in value]
    if isinstance(value, str):
        return interpolate(value, params)
    return value


def strip_missing(value: Any) -> Any:
    """Replace ``MISSING`` with ``None`` for hand-off to the builder."""
    if value is MISSING:
        return None
    if isinstance(value, list):
        return [strip_missing(sub) for sub in value]
    if isinstance(value, tuple):
        return tuple(strip_missing(sub) for sub in value)
    if isinstance(value, dict):
        return {key: strip_missing(sub) for key, sub in value.items()}
    return value


# ---- raw expressions -----------------------------------------------------
def contains_raw_refs(value: Any) -> bool:
    """Cheap pre-check so raw resolution can be skipped entirely."""
    if isinstance(value, dict):
        return "$raw" in value or any(contains_raw_refs(sub) for sub in value.values())
    if isinstance(value, list):
        return any(contains_raw_refs(sub) for sub in value)
    return False


def resolve_raw_refs(
    value: Any, builder: QueryBuilder, validator: SecurityValidator
) -> Any:
    """Recursively turn ``$raw`` markers into builder raw-expression handles.

    Raises:
        InvalidRawError: If a marker is neither a string nor ``{sql, bindings}``
        InvalidRawExpressionError: If the SQL matches a dangerous pattern
    """
    if isinstance(value, dict):
        if is_raw_ref(value):
            return _to_raw(value, builder, validator)
        return {key: resolve_raw_refs(sub, builder, validator) for key, sub in value.items()}
    if isinstance(value, list):
        return [resolve_raw_refs(sub, builder, validator) for sub in value]
    return value


def _to_raw(marker: dict[str, Any], builder: QueryBuilder, validator: SecurityValidator) -> Any:
    sql = raw_sql_of(marker)
    if sql is None:
        msg = "$raw must be a SQL string or an object with an 'sql' key"
        raise InvalidRawError(msg)

    check = validator.validate_raw_expression(sql)
    if not check.valid:
        raise InvalidRawExpressionError(check.message, matched_pattern=check.matched_pattern)

    raw = marker["$raw"]
    bindings = raw.get("bindings") if isinstance(raw, Mapping) else None
    return builder.raw(sql, list(bindings) if bindings else None)
