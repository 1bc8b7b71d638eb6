from __future__ import annotations

import pytest

from qbml.security.patterns import DEFAULT_PATTERNS, DangerousPattern, DangerousPatternCatalog


@pytest.mark.parametrize(
    ("expression", "name"),
    [
        ("1=1; DROP TABLE users", "stacked_statement"),
        ("drop table users", "ddl_statement"),
        ("id IN (DELETE FROM users)", "delete_statement"),
        ("name = 'a' -- trailing", "line_comment"),
        ("/* hidden */ 1", "block_comment"),
        ("xp_cmdshell('dir')", "mssql_xp"),
        ("OPENROWSET('SQLNCLI', 'x')", "mssql_openrowset"),
        ("LOAD_FILE('/etc/passwd')", "mysql_load_file"),
        ("SLEEP(5)", "mysql_sleep"),
        ("pg_sleep(5)", "pg_sleep"),
        ("WAITFOR DELAY '0:0:5'", "waitfor_delay"),
        ("utl_http.request('x')", "oracle_utl"),
        ("1 UNION SELECT password FROM users", "union_select"),
        ("@@version", "server_variable"),
        ("id IN (SELECT id FROM information_schema.tables)", "system_catalog"),
        ("name = 0x41424344", "hex_literal"),
        ("name = CHAR(65, 66)", "char_concat"),
        ("UNHEX('41')", "unhex_decode"),
    ],
)
def test_default_catalog_matches(expression: str, name: str) -> None:
    match = DangerousPatternCatalog.default().first_match(expression)
    assert match is not None
    assert match.name == name


@pytest.mark.parametrize(
    "expression",
    [
        "UPPER(name)",
        "price * quantity",
        "COALESCE(total, 0) AS total",
        "created_at > NOW()",
        "status IN ('active', 'pending')",
        "COUNT(*) > 1",
        "CASE WHEN age > 18 THEN 'adult' ELSE 'minor' END",
    ],
)
def test_default_catalog_accepts_ordinary_expressions(expression: str) -> None:
    assert DangerousPatternCatalog.default().first_match(expression) is None


def test_keyword_prescreen() -> None:
    catalog = DangerousPatternCatalog.default()
    assert not catalog.has_keyword("price * quantity")
    assert catalog.has_keyword("a; b")
    assert catalog.has_keyword("DROP")


def test_catalog_metadata() -> None:
    catalog = DangerousPatternCatalog.default()
    assert len(catalog.patterns) == len(DEFAULT_PATTERNS)
    assert {"statement", "comment", "timing", "injection", "encoding"} <= catalog.categories
    assert all(kw == kw.lower() for kw in catalog.keywords)


def test_extra_patterns_extend_the_catalog() -> None:
    extra = DangerousPattern("custom_fn", "custom", r"\bdangerous_fn\s*\(", ("dangerous_fn",))
    catalog = DangerousPatternCatalog.default([extra])
    match = catalog.first_match("dangerous_fn(1)")
    assert match is not None
    assert match.category == "custom"
    assert DangerousPatternCatalog.default().first_match("dangerous_fn(1)") is None
