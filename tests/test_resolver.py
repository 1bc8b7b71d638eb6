from __future__ import annotations

import copy
import pickle

import pytest

from fakes import RecordingBuilder
from qbml.exceptions import InvalidRawError, InvalidRawExpressionError
from qbml.resolver import (
    MISSING,
    contains_raw_refs,
    interpolate,
    lookup_param,
    resolve_param_refs,
    resolve_raw_refs,
    strip_missing,
)
from qbml.security.validator import SecurityValidator


def test_missing_sentinel() -> None:
    assert not MISSING
    assert repr(MISSING) == "MISSING"
    assert copy.deepcopy(MISSING) is MISSING
    assert pickle.loads(pickle.dumps(MISSING)) is MISSING
    assert MISSING is not None


def test_lookup_param() -> None:
    assert lookup_param({"a": None}, "a") is None
    assert lookup_param({"a": 1}, "b") is MISSING
    assert lookup_param(None, "a") is MISSING


def test_interpolate_scalars_only() -> None:
    params = {"status": "active", "n": 5, "flag": True, "ids": [1, 2]}
    assert interpolate("status = '$status$'", params) == "status = 'active'"
    assert interpolate("LIMIT $n$", params) == "LIMIT 5"
    assert interpolate("x = $flag$", params) == "x = true"
    assert interpolate("id IN ($ids$)", params) == "id IN ($ids$)"
    assert interpolate("$unknown$", params) == "$unknown$"
    assert interpolate("price * 2", params) == "price * 2"


def test_resolve_param_refs_is_recursive_and_pure() -> None:
    value = ["status", "=", {"$param": "status"}, {"nested": [{"$param": "missing"}]}]
    original = copy.deepcopy(value)
    resolved = resolve_param_refs(value, {"status": "active"})
    assert resolved == ["status", "=", "active", {"nested": [MISSING]}]
    assert value == original


def test_param_ref_keeps_null_values() -> None:
    assert resolve_param_refs({"$param": "x"}, {"x": None}) is None
    assert resolve_param_refs({"$param": "x"}, {}) is MISSING


def test_templates_inside_structures() -> None:
    resolved = resolve_param_refs({"sql": "name = '$n$'", "keep": 3}, {"n": "bob"})
    assert resolved == {"sql": "name = 'bob'", "keep": 3}


def test_strip_missing() -> None:
    assert strip_missing(MISSING) is None
    assert strip_missing(["a", MISSING, {"b": MISSING}]) == ["a", None, {"b": None}]
    assert strip_missing(("x", MISSING)) == ("x", None)


def test_contains_raw_refs() -> None:
    assert contains_raw_refs(["a", ">", {"$raw": "NOW()"}])
    assert contains_raw_refs({"x": [{"$raw": {"sql": "1"}}]})
    assert not contains_raw_refs(["a", ">", 1])


def test_resolve_raw_refs_uses_builder_handles() -> None:
    builder = RecordingBuilder()
    resolved = resolve_raw_refs(
        ["created_at", ">", {"$raw": "NOW()"}, {"$raw": {"sql": "? + 1", "bindings": [4]}}],
        builder,
        SecurityValidator(),
    )
    assert resolved == ["created_at", ">", ("raw", "NOW()", ()), ("raw", "? + 1", (4,))]


def test_malformed_raw_marker() -> None:
    with pytest.raises(InvalidRawError):
        resolve_raw_refs({"$raw": 5}, RecordingBuilder(), SecurityValidator())
    with pytest.raises(InvalidRawError):
        resolve_raw_refs({"$raw": {"bindings": [1]}}, RecordingBuilder(), SecurityValidator())


def test_dangerous_raw_marker() -> None:
    with pytest.raises(InvalidRawExpressionError) as excinfo:
        resolve_raw_refs(["a", {"$raw": "SLEEP(10)"}], RecordingBuilder(), SecurityValidator())
    assert excinfo.value.matched_pattern == "mysql_sleep"
    assert excinfo.value.kind == "InvalidRawExpression"
