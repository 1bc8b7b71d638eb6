from __future__ import annotations

from qbml.sql_format import pretty_sql


def test_pretty_sql_uppercases_and_reindents() -> None:
    out = pretty_sql("select id, name from users where status = 'active' order by id")
    lines = out.splitlines()
    assert lines[0].startswith("SELECT id")
    assert any(line.startswith("FROM users") for line in lines)
    assert any(line.startswith("WHERE status = 'active'") for line in lines)
    assert "ORDER BY id" in out


def test_pretty_sql_keeps_literals() -> None:
    assert "'select me'" in pretty_sql("select 'select me' as x")


def test_pretty_sql_empty_input() -> None:
    assert pretty_sql("") == ""
