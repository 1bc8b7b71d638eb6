from __future__ import annotations

from typing import Any

import pytest

from qbml.conditions import ConditionEvaluator


def _eval(condition: Any, args: list[Any] | None = None, params: dict[str, Any] | None = None) -> bool:
    return ConditionEvaluator().evaluate(condition, args or [], params or {})


def test_booleans_and_string_shorthand() -> None:
    assert _eval(True) is True
    assert _eval(False) is False
    assert _eval("false") is False
    assert _eval("true") is True
    assert _eval("hasValues", ["id", [1, 2]]) is True
    assert _eval("hasValues", ["id", []]) is False
    assert _eval("notEmpty", ["id"]) is True
    assert _eval("isEmpty", ["id", []]) is True
    assert _eval("isEmpty", ["id"]) is False


def test_unknown_conditions_apply_the_action() -> None:
    assert _eval("sometimes") is True
    assert _eval({}) is True
    assert _eval({"whatever": 1}) is True
    assert _eval(42) is True


def test_argument_emptiness() -> None:
    assert _eval({"notEmpty": True}, ["id", [1]]) is True
    assert _eval({"notEmpty": True}, ["id", []]) is False
    assert _eval({"notEmpty": False}, ["id", []]) is True
    assert _eval({"isEmpty": 2}, ["name", ""]) is True
    assert _eval({"isEmpty": 2}, ["name", "bob"]) is False
    assert _eval({"notEmpty": 1}, [None]) is False


def test_argument_comparisons() -> None:
    args = ["age", ">", 21]
    assert _eval({"gt": [3, 18]}, args) is True
    assert _eval({"lte": [3, 20]}, args) is False
    assert _eval({"eq": [2, ">"]}, args) is True


@pytest.mark.parametrize(
    "condition",
    [
        {"gt": [9, 1]},
        {"gt": [0, 1]},
        {"gt": ["1", 1]},
        {"gt": [1]},
        {"gt": 5},
    ],
)
def test_malformed_argument_comparisons_fail_closed(condition: dict[str, Any]) -> None:
    assert _eval(condition, ["age", 30]) is False


def test_incomparable_values_fail_closed() -> None:
    assert _eval({"gt": [1, 10]}, ["text"]) is False


def test_param_conditions() -> None:
    params = {"ids": [1, 2], "empty": [], "limit": 0, "q": None, "name": "x"}
    assert _eval({"param": "ids", "notEmpty": True}, params=params) is True
    assert _eval({"param": "empty", "notEmpty": True}, params=params) is False
    assert _eval({"param": "empty", "isEmpty": True}, params=params) is True
    assert _eval({"param": "limit", "gte": 1}, params=params) is False
    assert _eval({"param": "limit", "eq": 0}, params=params) is True
    assert _eval({"param": "q", "hasValue": True}, params=params) is False
    assert _eval({"param": "name", "hasValue": True}, params=params) is True
    assert _eval({"param": "name"}, params=params) is True


def test_missing_param_counts_only_as_empty() -> None:
    assert _eval({"param": "nope", "isEmpty": True}) is True
    assert _eval({"param": "nope", "notEmpty": True}) is False
    assert _eval({"param": "nope", "notEmpty": False}) is True
    assert _eval({"param": "nope", "hasValue": True}) is False
    assert _eval({"param": "nope", "hasValue": False}) is True
    assert _eval({"param": "nope", "lt": 10}) is False
    assert _eval({"param": "nope"}) is False


def test_null_param_is_distinct_from_missing() -> None:
    assert _eval({"param": "q"}, params={"q": None}) is True
    assert _eval({"param": "q"}) is False


def test_logical_operators() -> None:
    params = {"a": 1, "b": []}
    assert _eval({"and": [{"param": "a", "eq": 1}, {"param": "b", "isEmpty": True}]}, params=params) is True
    assert _eval({"and": [{"param": "a", "eq": 1}, {"param": "b", "notEmpty": True}]}, params=params) is False
    assert _eval({"or": [{"param": "a", "eq": 2}, {"param": "b", "isEmpty": True}]}, params=params) is True
    assert _eval({"not": {"param": "a", "eq": 1}}, params=params) is False
    assert _eval({"and": []}) is True
    assert _eval({"or": []}) is True
