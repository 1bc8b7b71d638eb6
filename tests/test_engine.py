from __future__ import annotations

from typing import Any

import pytest

from fakes import RecordingBuilder
from qbml.engine import QBML
from qbml.exceptions import (
    ActionNotAllowedError,
    ExecutorNotAllowedError,
    InvalidColumnKeyError,
    InvalidCTEError,
    InvalidFromSubError,
    InvalidJoinSubError,
    InvalidRawExpressionError,
    InvalidReturnFormatError,
    InvalidTableError,
    InvalidUnionError,
    InvalidWhereExistsError,
    SecurityViolationError,
)
from qbml.models import ExecuteOptions, QBMLConfig, QBMLDefaults, SecurityConfig, SecurityPolicy

ROWS = [{"id": 1, "name": "Alice"}, {"id": 2, "name": "Bob"}]


def _mk(config: QBMLConfig | None = None, **results: Any) -> tuple[QBML, RecordingBuilder]:
    builder = RecordingBuilder({"get": ROWS, **results})
    return QBML(lambda: builder, config), builder


def test_basic_dispatch_preserves_action_strings() -> None:
    qbml, builder = _mk()
    result = qbml.execute(
        [
            {"from": "users"},
            {"select": ["id", "name"]},
            {"where": ["status", "active"]},
            {"orWhere": ["age", ">", 30]},
            {"orWhereNotIn": ["id", [7, 8]]},
            {"andWhereNotNull": "email"},
            {"orderByDesc": "id"},
            {"get": True},
        ]
    )
    assert result == ROWS
    assert builder.calls == [
        ("from_", ("users",)),
        ("select", ("select", ["id", "name"])),
        ("where", ("where", "status", "active")),
        ("where", ("orWhere", "age", ">", 30)),
        ("where_in", ("orWhereNotIn", "id", [7, 8])),
        ("where_null", ("andWhereNotNull", "email")),
        ("order_by", ("id", "desc")),
        ("get", ({"native": False},)),
    ]


def test_get_is_the_default_executor() -> None:
    qbml, builder = _mk()
    assert qbml.execute([{"from": "users"}]) == ROWS
    assert builder.names()[-1] == "get"


def test_named_arguments_and_params() -> None:
    qbml, builder = _mk()
    qbml.execute(
        [
            {"from": "users"},
            {"where": {"column": "status", "operator": "=", "value": {"$param": "status"}}},
            {"whereBetween": {"column": "age", "start": 18, "end": {"$param": "max_age"}}},
        ],
        {"params": {"status": "active", "max_age": 65}},
    )
    assert builder.calls_to("where") == [("where", "status", "=", "active")]
    assert builder.calls_to("where_between") == [("whereBetween", "age", 18, 65)]


def test_missing_params_reach_the_builder_as_none() -> None:
    qbml, builder = _mk()
    qbml.execute([{"from": "users"}, {"where": ["deleted_at", {"$param": "deleted"}]}])
    assert builder.calls_to("where") == [("where", "deleted_at", None)]


def test_missing_row_counts_skip_limit_and_offset() -> None:
    qbml, builder = _mk()
    query = [{"from": "users"}, {"limit": {"$param": "n"}}, {"offset": {"$param": "o"}}, {"take": True}, {"get": True}]
    assert qbml.execute(query) == ROWS
    assert builder.calls_to("limit") == []
    assert builder.calls_to("offset") == []
    assert builder.names()[-1] == "get"

    capped, builder = _mk(QBMLConfig(defaults=QBMLDefaults(max_rows=100)))
    capped.execute([{"from": "users"}, {"limit": {"$param": "n"}}])
    assert builder.calls_to("limit") == [(100,)]


@pytest.mark.parametrize(
    ("item", "method", "expected"),
    [
        ({"limit": {"$param": "n"}}, "limit", []),
        ({"skip": {"$param": "n"}}, "offset", []),
        ({"forPage": [{"$param": "page"}, {"$param": "size"}]}, "for_page", [(1, 25)]),
        (
            {"whereBetween": ["age", {"$param": "lo"}, {"$param": "hi"}]},
            "where_between",
            [("whereBetween", "age", None, None)],
        ),
        ({"get": True, "timeout": {"$param": "t"}, "datasource": {"$param": "ds"}}, "get", [({"native": False},)]),
        (
            {"paginate": {"page": {"$param": "page"}, "maxRows": {"$param": "size"}}},
            "paginate",
            [(1, 25, {"native": False})],
        ),
    ],
)
def test_absent_params_are_not_errors(item: dict[str, Any], method: str, expected: list[tuple[Any, ...]]) -> None:
    envelope = {"results": list(ROWS), "pagination": {"page": 1, "maxRows": 25, "totalRecords": 2, "totalPages": 1}}
    qbml, builder = _mk(paginate=envelope)
    qbml.execute([{"from": "users"}, item], {"params": {}})
    assert builder.calls_to(method) == expected


def test_raw_markers_become_builder_handles() -> None:
    qbml, builder = _mk()
    qbml.execute([{"from": "users"}, {"where": ["created_at", ">", {"$raw": "NOW()"}]}])
    assert builder.calls_to("where") == [("where", "created_at", ">", ("raw", "NOW()", ()))]


def test_raw_actions_pass_sql_and_bindings() -> None:
    qbml, builder = _mk()
    qbml.execute(
        [
            {"from": "users"},
            {"selectRaw": "UPPER(name) AS shout"},
            {"whereRaw": ["age > ?", [21]]},
            {"orHavingRaw": {"sql": "COUNT(*) > ?", "bindings": [1]}},
            {"orderByRaw": "name DESC"},
        ]
    )
    assert builder.calls_to("select_raw") == [("UPPER(name) AS shout", None)]
    assert builder.calls_to("where_raw") == [("whereRaw", "age > ?", [21])]
    assert builder.calls_to("having_raw") == [("orHavingRaw", "COUNT(*) > ?", [1])]
    assert builder.calls_to("order_by_raw") == [("name DESC", None)]


def test_dangerous_query_fails_before_any_builder_call() -> None:
    qbml, builder = _mk()
    with pytest.raises(SecurityViolationError):
        qbml.execute([{"from": "users"}, {"whereRaw": "1=1; DROP TABLE users"}, {"get": True}])
    assert builder.calls == []
    assert not qbml.validate([{"from": "users"}, {"selectRaw": "SLEEP(5)"}]).valid


def test_template_injection_is_rechecked_after_resolution() -> None:
    qbml, _ = _mk()
    with pytest.raises(InvalidRawExpressionError):
        qbml.execute(
            [{"from": "users"}, {"whereRaw": "name = '$name$'"}],
            {"params": {"name": "x'; DROP TABLE users; SELECT '"}},
        )


def test_table_policy_after_template_resolution() -> None:
    config = QBMLConfig(security=SecurityConfig(tables=SecurityPolicy(mode="block", entries=("secrets",))))
    qbml, _ = _mk(config)
    with pytest.raises(SecurityViolationError):
        qbml.execute([{"from": "secrets"}])
    with pytest.raises(InvalidTableError):
        qbml.execute([{"from": "$table$"}], {"params": {"table": "secrets"}})


def test_table_aliases_are_resolved() -> None:
    qbml, builder = _mk(QBMLConfig(aliases={"people": "crm.users"}))
    qbml.execute([{"from": "people as p"}, {"leftJoin": ["orders o", "p.id", "o.user_id"]}])
    assert builder.calls_to("from_") == [("crm.users as p",)]
    assert builder.calls_to("join") == [("leftJoin", "orders o", "p.id", "=", "o.user_id")]


def test_action_policy() -> None:
    config = QBMLConfig(security=SecurityConfig(actions=SecurityPolicy(mode="block", entries=("whereRaw",))))
    qbml, _ = _mk(config)
    with pytest.raises(ActionNotAllowedError):
        qbml.execute([{"from": "users"}, {"orWhereRaw": "a = 1"}])


def test_executor_policy() -> None:
    config = QBMLConfig(security=SecurityConfig(executors=SecurityPolicy(mode="allow", entries=("get",))))
    qbml, builder = _mk(config)
    with pytest.raises(ExecutorNotAllowedError):
        qbml.execute([{"from": "users"}, {"toSQL": True}])
    assert builder.calls == []


def test_cte_items_are_applied_first() -> None:
    qbml, builder = _mk()
    qbml.execute(
        [
            {"from": "recent"},
            {"select": ["id"]},
            {"with": "recent", "query": [{"from": "orders"}, {"where": ["total", ">", 50]}]},
        ]
    )
    assert builder.names()[:2] == ["with_", "from_"]
    assert builder.calls[0] == (
        "with_",
        ("with", "recent", ("sub", [("from_", ("orders",)), ("where", ("where", "total", ">", 50))]), None),
    )


def test_cte_names_pass_an_allow_list() -> None:
    config = QBMLConfig(security=SecurityConfig(tables=SecurityPolicy(mode="allow", entries=("orders",))))
    qbml, builder = _mk(config)
    qbml.execute(
        [
            {"withRecursive": {"name": "tree"}, "columns": ["id"], "query": [{"from": "orders"}]},
            {"from": "tree"},
        ]
    )
    assert builder.calls[0][1][0] == "withRecursive"
    assert builder.calls[0][1][3] == ["id"]
    assert builder.calls_to("from_") == [("tree",)]


def test_when_and_else() -> None:
    qbml, builder = _mk()
    qbml.execute(
        [
            {"from": "users"},
            {"where": ["status", {"$param": "status"}], "when": {"param": "status", "hasValue": True}},
            {"whereIn": ["id", {"$param": "ids"}], "when": "hasValues"},
            {"orderBy": ["name", "asc"], "when": False, "else": {"orderBy": ["id", "desc"]}},
            {"limit": 5, "when": {"param": "paged", "eq": True}, "else": [{"limit": 50}, {"offset": 10}]},
        ],
        {"params": {"ids": []}},
    )
    assert builder.calls_to("where") == []
    assert builder.calls_to("where_in") == []
    assert builder.calls_to("order_by") == [("id", "desc")]
    assert builder.calls_to("limit") == [(50,)]
    assert builder.calls_to("offset") == [(10,)]


def test_nested_where_group() -> None:
    qbml, builder = _mk()
    qbml.execute(
        [
            {"from": "users"},
            {"where": ["active", True]},
            {"orWhere": [{"where": ["role", "admin"]}, {"andWhere": ["age", ">", 18]}]},
        ]
    )
    assert builder.calls_to("where_nested") == [
        ("orWhere", ("sub", [("where", ("where", "role", "admin")), ("where", ("andWhere", "age", ">", 18))])),
    ]


def test_join_variants() -> None:
    qbml, builder = _mk()
    qbml.execute(
        [
            {"from": "users"},
            {"join": ["orders", "users.id", "orders.user_id"]},
            {"rightJoin": ["payments", "orders.id", "<>", "payments.order_id"]},
            {
                "leftJoin": "profiles",
                "on": [{"on": ["users.id", "profiles.user_id"]}, {"orOn": ["users.alt_id", "=", "profiles.user_id"]}],
            },
            {"crossJoin": "regions"},
            {"joinRaw": ["archive a", "a.user_id", "users.id"]},
        ]
    )
    assert builder.calls_to("join") == [
        ("join", "orders", "users.id", "=", "orders.user_id"),
        ("rightJoin", "payments", "orders.id", "<>", "payments.order_id"),
    ]
    assert builder.calls_to("join_on") == [
        (
            "leftJoin",
            "profiles",
            ("on", [("on", "users.id", "=", "profiles.user_id"), ("orOn", "users.alt_id", "=", "profiles.user_id")]),
        ),
    ]
    assert builder.calls_to("cross_join") == [("regions",)]
    assert builder.calls_to("join_raw") == [("joinRaw", "archive a", "a.user_id", "=", "users.id")]


def test_subquery_actions() -> None:
    qbml, builder = _mk()
    qbml.execute(
        [
            {"fromSub": "u", "query": [{"from": "users"}, {"where": ["active", True]}]},
            {"subSelect": {"alias": "order_count"}, "query": [{"from": "orders"}, {"selectCount": "id"}]},
            {"whereIn": "id", "query": [{"from": "orders"}, {"select": ["user_id"]}]},
            {"orWhereNotExists": True, "query": [{"from": "bans"}]},
            {"leftJoinSub": ["o", "o.user_id", "=", "u.id"], "query": [{"from": "orders"}]},
            {"unionAll": True, "query": [{"from": "archived_users"}]},
        ]
    )
    assert builder.calls_to("from_sub") == [
        ("u", ("sub", [("from_", ("users",)), ("where", ("where", "active", True))])),
    ]
    assert builder.calls_to("sub_select") == [
        ("order_count", ("sub", [("from_", ("orders",)), ("select_aggregate", ("selectCount", "id", None))])),
    ]
    assert builder.calls_to("where_in") == [("whereIn", "id", ("sub", [("from_", ("orders",)), ("select", ("select", ["user_id"]))]))]
    assert builder.calls_to("where_exists") == [("orWhereNotExists", ("sub", [("from_", ("bans",))]))]
    assert builder.calls_to("join_sub") == [
        ("leftJoinSub", "o", ("sub", [("from_", ("orders",))]), ("on", [("on", "o.user_id", "=", "u.id")])),
    ]
    assert builder.calls_to("union") == [("unionAll", ("sub", [("from_", ("archived_users",))]))]


@pytest.mark.parametrize(
    ("item", "error"),
    [
        ({"fromSub": "u"}, InvalidFromSubError),
        ({"joinSub": "o", "query": [{"from": "orders"}]}, InvalidJoinSubError),
        ({"whereExists": True}, InvalidWhereExistsError),
        ({"union": True}, InvalidUnionError),
        ({"with": "recent"}, InvalidCTEError),
    ],
)
def test_malformed_nested_definitions(item: dict[str, Any], error: type[Exception]) -> None:
    qbml, _ = _mk()
    with pytest.raises(error):
        qbml.execute([{"from": "users"}, item])


def test_return_format_priority() -> None:
    query = [{"from": "users"}, {"get": True, "returnFormat": "tabular"}]

    qbml, _ = _mk()
    declared = qbml.execute(query)
    assert declared["columns"][0] == {"name": "id", "type": "integer"}

    assert qbml.execute(query, ExecuteOptions(return_format="array")) == ROWS
    assert qbml.execute(query, {"returnFormat": ["struct", "id", ["name"]]}) == {1: "Alice", 2: "Bob"}

    configured, _ = _mk(QBMLConfig(defaults=QBMLDefaults(return_format="tabular")))
    assert configured.execute([{"from": "users"}])["rows"] == [[1, "Alice"], [2, "Bob"]]


def test_native_results_requested_for_tabular() -> None:
    qbml, builder = _mk()
    qbml.execute([{"from": "users"}], {"returnFormat": "tabular"})
    assert builder.calls_to("get") == [({"native": True},)]


def test_return_format_errors() -> None:
    qbml, _ = _mk()
    with pytest.raises(InvalidReturnFormatError):
        qbml.execute([{"from": "users"}], {"returnFormat": "xml"})
    with pytest.raises(InvalidColumnKeyError):
        qbml.execute([{"from": "users"}], {"returnFormat": ["struct", "missing"]})


def test_execution_options_merge() -> None:
    config = QBMLConfig(defaults=QBMLDefaults(datasource="primary", timeout=30))
    qbml, builder = _mk(config)
    qbml.execute([{"from": "users"}, {"get": True, "datasource": "replica", "timeout": 5}], {"timeout": 1})
    assert builder.calls_to("get") == [({"datasource": "replica", "timeout": 1, "native": False},)]


def test_absent_option_params_keep_configured_defaults() -> None:
    config = QBMLConfig(defaults=QBMLDefaults(datasource="primary", timeout=30))
    qbml, builder = _mk(config)
    qbml.execute([{"from": "users"}, {"get": True, "timeout": {"$param": "t"}}])
    assert builder.calls_to("get") == [({"datasource": "primary", "timeout": 30, "native": False},)]


def test_last_executor_wins() -> None:
    qbml, builder = _mk(count=3)
    assert qbml.execute([{"from": "users"}, {"get": True}, {"count": True}]) == 3
    assert builder.calls_to("count") == [("*", {})]
    assert "get" not in builder.names()


def test_max_rows_ceiling() -> None:
    config = QBMLConfig(defaults=QBMLDefaults(max_rows=100))
    qbml, builder = _mk(config)
    qbml.execute([{"from": "users"}])
    assert builder.calls_to("limit") == [(100,)]

    qbml, builder = _mk(config)
    qbml.execute([{"from": "users"}, {"take": 5}])
    assert builder.calls_to("limit") == [(5,)]


def test_paginate() -> None:
    envelope = {"results": list(ROWS), "pagination": {"page": 2, "maxRows": 10, "totalRecords": 12, "totalPages": 2}}
    qbml, builder = _mk(QBMLConfig(defaults=QBMLDefaults(max_rows=5)), paginate=envelope)
    out = qbml.execute([{"from": "users"}, {"paginate": {"page": 2, "maxRows": 10}, "returnFormat": ["struct", "id", "name"]}])
    assert builder.calls_to("paginate") == [(2, 5, {"native": False})]
    assert out["results"] == {1: "Alice", 2: "Bob"}


def test_scalar_executors() -> None:
    qbml, builder = _mk(first=ROWS[0], find=ROWS[1], exists=True, sum=10, to_sql="SELECT 1", value="Alice")
    assert qbml.execute([{"from": "users"}, {"first": True}]) == ROWS[0]
    assert qbml.execute([{"from": "users"}, {"find": 2}]) == ROWS[1]
    assert qbml.execute([{"from": "users"}, {"find": {"id": "a1", "idColumn": "uuid"}}]) == ROWS[1]
    assert qbml.execute([{"from": "users"}, {"exists": True}]) is True
    assert qbml.execute([{"from": "users"}, {"sum": "total"}]) == 10
    assert qbml.execute([{"from": "users"}, {"value": {"column": "name"}}]) == "Alice"
    assert qbml.execute([{"from": "users"}, {"toSQL": True}]) == "SELECT 1"
    assert builder.calls_to("find") == [(2, "id", {}), ("a1", "uuid", {})]
    assert builder.calls_to("sum") == [("total", {})]


def test_avg_uses_coalesced_projection() -> None:
    qbml, builder = _mk(QBMLConfig(avg_default=0), first={"aggregate": 12.5})
    assert qbml.execute([{"from": "orders"}, {"avg": "total"}]) == 12.5
    assert builder.calls_to("select") == [("select", [("raw", "COALESCE(AVG(total), 0) AS aggregate", ())])]

    empty, _ = _mk(QBMLConfig(avg_default=0), first=None)
    assert empty.execute([{"from": "orders"}, {"avg": "total"}]) == 0


@pytest.mark.parametrize("column", ["(SELECT MAX(pin) FROM secrets)", "total) + (1", "1"])
def test_avg_rejects_expressions(column: str) -> None:
    qbml, builder = _mk(first={"aggregate": 4242.0})
    with pytest.raises(InvalidRawExpressionError, match="avg column"):
        qbml.execute([{"from": "orders"}, {"avg": column}])
    assert builder.calls_to("select") == []


def test_to_sql_and_build_ignore_executors() -> None:
    qbml, builder = _mk(to_sql="SELECT * FROM users")
    assert qbml.to_sql([{"from": "users"}, {"count": True}]) == "SELECT * FROM users"
    assert builder.names() == ["from_", "to_sql"]


def test_resolve_executor() -> None:
    qbml, _ = _mk()
    call, parsed = qbml.resolve_executor([{"from": "users"}, {"first": True, "returnFormat": "tabular"}])
    assert call.name == "first"
    assert parsed.format == "tabular"
    call, parsed = qbml.resolve_executor([{"from": "users"}])
    assert call.name == "get"
    assert parsed.format == "array"


def test_unrecognized_items_are_skipped() -> None:
    qbml, builder = _mk()
    qbml.execute([{"from": "users"}, {"frobnicate": 1}, "junk", {"limit": 2}])
    assert builder.names() == ["from_", "limit", "get"]
