"""Recording test doubles for the QueryBuilder protocol."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

EXECUTOR_METHODS = frozenset(
    {
        "get",
        "first",
        "find",
        "value",
        "values",
        "count",
        "sum",
        "min",
        "max",
        "exists",
        "paginate",
        "simple_paginate",
        "to_sql",
        "dump",
    }
)
# Methods whose trailing callable is a join-condition callback, not a subquery.
JOIN_CALLBACK_METHODS = frozenset({"join_on", "join_sub"})


class FakeJoinClause:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    def on(self, method: str, first: Any, operator: Any = None, second: Any = None) -> FakeJoinClause:
        self.calls.append((method, first, operator, second))
        return self


class RecordingBuilder:
    """Records every protocol call as ``(method, args)``.

    Continuations are run immediately: subqueries against a fresh child
    builder (recorded as ``("sub", child.calls)``) and join callbacks against a
    ``FakeJoinClause`` (recorded as ``("on", clause.calls)``). Executors return
    ``results[name]``, calling it with the executor arguments when callable.
    """

    def __init__(self, results: dict[str, Any] | None = None) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.results: dict[str, Any] = results if results is not None else {}

    def new_query(self) -> RecordingBuilder:
        return RecordingBuilder(self.results)

    def raw(self, sql: str, bindings: list[Any] | None = None) -> tuple[Any, ...]:
        return ("raw", sql, tuple(bindings or ()))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [args for called, args in self.calls if called == name]

    def _expand(self, name: str, args: tuple[Any, ...]) -> tuple[Any, ...]:
        out: list[Any] = []
        for index, arg in enumerate(args):
            if not callable(arg):
                out.append(arg)
            elif name in JOIN_CALLBACK_METHODS and index == len(args) - 1:
                clause = arg(FakeJoinClause())
                out.append(("on", clause.calls))
            else:
                child = arg(self.new_query())
                out.append(("sub", child.calls))
        return tuple(out)

    def __getattr__(self, name: str) -> Callable[..., Any]:
        if name.startswith("_"):
            raise AttributeError(name)

        def _record(*args: Any) -> Any:
            self.calls.append((name, self._expand(name, args)))
            if name in EXECUTOR_METHODS:
                result = self.results.get(name)
                return result(*args) if callable(result) else result
            return self

        return _record
