from __future__ import annotations

from qbml.actions.arguments import is_action_list, to_positional


def test_positional_arrays_pass_through() -> None:
    assert to_positional("where", ["status", "=", "active"]) == ["status", "=", "active"]
    assert to_positional("whereBetween", ["age", 18, 65]) == ["age", 18, 65]


def test_scalar_becomes_single_argument() -> None:
    assert to_positional("whereNull", "deleted_at") == ["deleted_at"]
    assert to_positional("limit", 10) == [10]


def test_list_argument_actions_wrap_the_list() -> None:
    assert to_positional("select", ["id", "name"]) == [["id", "name"]]
    assert to_positional("groupBy", ["status"]) == [["status"]]


def test_named_arguments_follow_slot_order() -> None:
    value = {"value": "active", "column": "status", "operator": "="}
    assert to_positional("where", value) == ["status", "=", "active"]


def test_named_arguments_drop_absent_names() -> None:
    assert to_positional("where", {"column": "a", "value": 1}) == ["a", 1]


def test_named_argument_aliases() -> None:
    assert to_positional("forPage", {"page": 2, "maxRows": 50}) == [2, 50]
    assert to_positional("from", {"name": "users"}) == ["users"]
    assert to_positional("select", {"column": "id"}) == ["id"]
    assert to_positional("joinRaw", {"sql": "users u", "first": "u.id", "second": "o.user_id"}) == [
        "users u",
        "u.id",
        "o.user_id",
    ]


def test_join_named_arguments() -> None:
    value = {"table": "orders", "first": "users.id", "operator": "=", "second": "orders.user_id"}
    assert to_positional("leftJoin", value) == ["orders", "users.id", "=", "orders.user_id"]


def test_markers_are_not_treated_as_named_arguments() -> None:
    marker = {"$param": "status"}
    assert to_positional("where", marker) == [marker]
    raw = {"$raw": "NOW()"}
    assert to_positional("orderByRaw", raw) == [raw]


def test_unknown_named_object_is_single_argument() -> None:
    assert to_positional("distinct", {"x": 1}) == [{"x": 1}]


def test_is_action_list() -> None:
    assert is_action_list([{"where": ["a", 1]}, {"orWhere": ["b", 2]}])
    assert not is_action_list([])
    assert not is_action_list(["a", 1])
    assert not is_action_list([{"$param": "ids"}])
    assert not is_action_list({"where": ["a", 1]})
