"""Evaluation of ``when`` conditions.

A ``when`` gates whether an action is applied. Supported shapes:

- String shorthand: ``"hasValues"``, ``"notEmpty"``, ``"isEmpty"``,
  ``"true"``, ``"false"`` (and JSON booleans)
- Argument checks: ``{"notEmpty": true}``, ``{"isEmpty": 2}``,
  ``{"gt": [1, 10]}`` (indices are 1-based into the action's arguments)
- Parameter checks: ``{"param": "ids", "notEmpty": true}``,
  ``{"param": "limit", "gte": 1}``, ``{"param": "q", "hasValue": true}``
- Logical: ``{"and": [...]}``, ``{"or": [...]}``, ``{"not": {...}}``

Unknown or malformed conditions evaluate to ``True``: a condition the
interpreter does not understand never silently drops a query author's clause.
Argument comparisons are the exception and fail closed.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
import operator
from typing import Any, Final

from fastmcp.utilities.logging import get_logger

from qbml.resolver import MISSING, lookup_param

_logger = get_logger(__name__)

COMPARISONS: Final[dict[str, Callable[[Any, Any], bool]]] = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "eq": operator.eq,
    "neq": operator.ne,
}

# First key present decides a parameter condition.
PARAM_CONDITION_ORDER: Final[tuple[str, ...]] = (
    "notEmpty",
    "isEmpty",
    "hasValue",
    *COMPARISONS,
)


def _is_empty(value: Any) -> bool:
    if value is None or value is MISSING:
        return True
    if isinstance(value, str | list | tuple | dict | set):
        return len(value) == 0
    return False


def _compare(op: str, left: Any, right: Any) -> bool:
    if left is None or left is MISSING:
        return False
    try:
        return bool(COMPARISONS[op](left, right))
    except TypeError:
        return False


def _first_array(args: Sequence[Any]) -> list[Any] | tuple[Any, ...] | None:
    for arg in args:
        if isinstance(arg, list | tuple):
            return arg
    return None


class ConditionEvaluator:
    """Stateless evaluator for ``when`` expressions."""

    def evaluate(
        self,
        condition: Any,
        args: Sequence[Any] = (),
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        """Evaluate ``condition`` against an action's arguments and parameters.

        Args:
            condition: The ``when`` value
            args: The action's resolved positional arguments
            params: Runtime parameter map

        Returns:
            True when the action should be applied
        """
        result = self._evaluate(condition, args, params or {})
        _logger.debug("when %r -> %s", condition, result)
        return result

    # ---- dispatch ---------------------------------------------------------
    def _evaluate(self, condition: Any, args: Sequence[Any], params: Mapping[str, Any]) -> bool:
        if isinstance(condition, bool):
            return condition
        if isinstance(condition, str):
            return self._evaluate_shorthand(condition, args)
        if not isinstance(condition, Mapping) or not condition:
            return True

        if "and" in condition:
            operands = condition["and"]
            if not isinstance(operands, list):
                return True
            return all(self._evaluate(op, args, params) for op in operands)
        if "or" in condition:
            operands = condition["or"]
            if not isinstance(operands, list) or not operands:
                return True
            return any(self._evaluate(op, args, params) for op in operands)
        if "not" in condition:
            return not self._evaluate(condition["not"], args, params)

        if "param" in condition:
            return self._evaluate_param(condition, params)
        return self._evaluate_args(condition, args)

    # ---- string shorthand -------------------------------------------------
    def _evaluate_shorthand(self, condition: str, args: Sequence[Any]) -> bool:
        key = condition.strip().lower()
        if key in ("hasvalues", "notempty"):
            array = _first_array(args)
            return True if array is None else len(array) > 0
        if key == "isempty":
            array = _first_array(args)
            return False if array is None else len(array) == 0
        if key == "false":
            return False
        return True

    # ---- argument-based -----------------------------------------------------
    def _evaluate_args(self, condition: Mapping[str, Any], args: Sequence[Any]) -> bool:
        for key in ("notEmpty", "isEmpty"):
            if key in condition:
                return self._emptiness_of_args(key, condition[key], args)

        for op in COMPARISONS:
            if op not in condition:
                continue
            pair = condition[op]
            if not isinstance(pair, list | tuple) or len(pair) < 2:
                return False
            index = pair[0]
            if isinstance(index, bool) or not isinstance(index, int):
                return False
            if index < 1 or index > len(args):
                return False
            return _compare(op, args[index - 1], pair[1])
        return True

    def _emptiness_of_args(self, key: str, flag: Any, args: Sequence[Any]) -> bool:
        want_empty = key == "isEmpty"
        if isinstance(flag, bool):
            if not flag:
                want_empty = not want_empty
            array = _first_array(args)
            if array is None:
                return want_empty is False
            return (len(array) == 0) is want_empty
        if isinstance(flag, int):
            if flag < 1 or flag > len(args):
                return True
            return _is_empty(args[flag - 1]) is want_empty
        return True

    # ---- parameter-based ----------------------------------------------------
    def _evaluate_param(self, condition: Mapping[str, Any], params: Mapping[str, Any]) -> bool:
        name = condition.get("param")
        if not isinstance(name, str):
            return True
        value = lookup_param(params, name)

        for key in PARAM_CONDITION_ORDER:
            if key not in condition:
                continue
            flag = condition[key]
            if value is MISSING:
                # Absence counts as empty, and as nothing else.
                if key == "isEmpty":
                    return flag is not False
                if key in ("notEmpty", "hasValue"):
                    return flag is False
                return False
            if key == "notEmpty":
                return (not _is_empty(value)) is (flag is not False)
            if key == "isEmpty":
                return _is_empty(value) is (flag is not False)
            if key == "hasValue":
                return (value is not None) is (flag is not False)
            return _compare(key, value, flag)

        return value is not MISSING
