"""Dangerous SQL pattern catalog for raw-expression validation.

The catalog is data: each ``DangerousPattern`` names a category, a regex and
the lowercase keywords that must appear in an expression before the regex is
worth running. ``DangerousPatternCatalog`` compiles the regexes and derives a
keyword set once, so validation is a cheap substring pre-screen followed by a
regex pass only for expressions that hit a keyword.

Categories:
- statement: stacked or embedded DDL/DML statements
- comment: SQL comment syntax
- mssql / mysql / postgres / oracle: vendor-specific dangerous functions
- timing: time-based blind injection primitives
- injection: UNION/stacked SELECT, server variables, system catalogs
- encoding: hex and CHAR/CHR encoding bypasses
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import re
from typing import Final


@dataclass(frozen=True, slots=True)
class DangerousPattern:
    """A single catalog entry.

    Attributes:
        name: Stable identifier reported when the pattern matches
        category: Catalog category (statement, comment, mssql, ...)
        regex: Case-insensitive regular expression
        keywords: Lowercase substrings that gate the regex check
    """

    name: str
    category: str
    regex: str
    keywords: tuple[str, ...]


_STATEMENT_OBJECTS: Final[str] = (
    r"(?:table|database|schema|index|view|procedure|proc|function|trigger|user|role|sequence)"
)

DEFAULT_PATTERNS: Final[tuple[DangerousPattern, ...]] = (
    # statement
    DangerousPattern(
        "stacked_statement",
        "statement",
        r";\s*(?:drop|delete|insert|update|truncate|alter|create|exec|execute|grant|revoke|merge|shutdown)\b",
        (";",),
    ),
    DangerousPattern(
        "ddl_statement",
        "statement",
        rf"\b(?:drop|truncate|alter|create)\s+{_STATEMENT_OBJECTS}\b",
        ("drop", "truncate", "alter", "create"),
    ),
    DangerousPattern("delete_statement", "statement", r"\bdelete\s+from\b", ("delete",)),
    DangerousPattern("insert_statement", "statement", r"\binsert\s+into\b", ("insert",)),
    DangerousPattern(
        "update_statement",
        "statement",
        r"\bupdate\s+[\w.\[\]\"`]+\s+set\b",
        ("update",),
    ),
    DangerousPattern("merge_statement", "statement", r"\bmerge\s+into\b", ("merge",)),
    DangerousPattern(
        "exec_statement", "statement", r"\b(?:exec|execute)\b\s*[\(\w@'\"]", ("exec",)
    ),
    DangerousPattern(
        "privilege_statement", "statement", r"\b(?:grant|revoke)\s+\w+", ("grant", "revoke")
    ),
    DangerousPattern("shutdown_statement", "statement", r"\bshutdown\b", ("shutdown",)),
    # comment
    DangerousPattern("line_comment", "comment", r"--", ("--",)),
    DangerousPattern("block_comment", "comment", r"/\*", ("/*",)),
    DangerousPattern("mysql_hash_comment", "comment", r"#\s*$", ("#",)),
    # SQL Server
    DangerousPattern("mssql_xp", "mssql", r"\bxp_\w+", ("xp_",)),
    DangerousPattern(
        "mssql_sp", "mssql", r"\bsp_(?:executesql|oacreate|oamethod|configure|makewebtask)\b",
        ("sp_",),
    ),
    DangerousPattern(
        "mssql_openrowset",
        "mssql",
        r"\b(?:openrowset|opendatasource|openquery|openxml)\b",
        ("openrowset", "opendatasource", "openquery", "openxml"),
    ),
    DangerousPattern("mssql_bulk_insert", "mssql", r"\bbulk\s+insert\b", ("bulk",)),
    # MySQL
    DangerousPattern("mysql_load_file", "mysql", r"\bload_file\s*\(", ("load_file",)),
    DangerousPattern(
        "mysql_into_outfile",
        "mysql",
        r"\binto\s+(?:outfile|dumpfile)\b",
        ("outfile", "dumpfile"),
    ),
    DangerousPattern(
        "mysql_load_data", "mysql", r"\bload\s+data\s+(?:local\s+)?infile\b", ("infile",)
    ),
    DangerousPattern("mysql_benchmark", "mysql", r"\bbenchmark\s*\(", ("benchmark",)),
    DangerousPattern("mysql_sleep", "mysql", r"(?<![\w.])sleep\s*\(", ("sleep",)),
    # PostgreSQL
    DangerousPattern(
        "postgres_file_access",
        "postgres",
        r"\bpg_(?:read_file|read_binary_file|ls_dir|stat_file)\b",
        ("pg_read", "pg_ls_dir", "pg_stat_file"),
    ),
    DangerousPattern(
        "postgres_large_object", "postgres", r"\blo_(?:import|export)\b", ("lo_import", "lo_export")
    ),
    DangerousPattern(
        "postgres_copy",
        "postgres",
        r"\bcopy\s+[\w.\"]+(?:\s*\([^)]*\))?\s+(?:from|to)\b",
        ("copy",),
    ),
    # Oracle
    DangerousPattern(
        "oracle_utl", "oracle", r"\butl_(?:file|http|tcp|smtp|inaddr)\b", ("utl_",)
    ),
    DangerousPattern("oracle_dbms", "oracle", r"\bdbms_\w+", ("dbms_",)),
    # timing
    DangerousPattern("waitfor_delay", "timing", r"\bwaitfor\s+(?:delay|time)\b", ("waitfor",)),
    DangerousPattern("pg_sleep", "timing", r"\bpg_sleep(?:_for|_until)?\s*\(", ("pg_sleep",)),
    DangerousPattern("dbms_lock_sleep", "timing", r"\bdbms_lock\s*\.\s*sleep\b", ("dbms_lock",)),
    # injection markers
    DangerousPattern("stacked_select", "injection", r";\s*select\b", (";",)),
    DangerousPattern("union_select", "injection", r"\bunion\s+(?:all\s+)?select\b", ("union",)),
    DangerousPattern("server_variable", "injection", r"@@\w+", ("@@",)),
    DangerousPattern(
        "system_catalog",
        "injection",
        r"\b(?:information_schema|pg_catalog|pg_shadow|pg_user|sysobjects|syscolumns|"
        r"sysusers|all_tables|all_users|dba_users|user_tables)\b|\bsys\s*\.\s*\w+|\bmysql\s*\.\s*user\b",
        (
            "information_schema",
            "pg_catalog",
            "pg_shadow",
            "pg_user",
            "sysobjects",
            "syscolumns",
            "sysusers",
            "all_tables",
            "all_users",
            "dba_users",
            "user_tables",
            "sys",
            "mysql",
        ),
    ),
    # encoding bypasses
    DangerousPattern("hex_literal", "encoding", r"\b0x[0-9a-f]{4,}\b", ("0x",)),
    DangerousPattern(
        "char_concat",
        "encoding",
        r"\b(?:char|chr|nchar)\s*\(\s*\d+\s*(?:,\s*\d+\s*)+\)"
        r"|\b(?:char|chr|nchar)\s*\(\s*\d+\s*\)\s*(?:\+|\|\|)",
        ("char", "chr"),
    ),
    DangerousPattern(
        "unhex_decode", "encoding", r"\b(?:unhex|from_base64)\s*\(", ("unhex", "from_base64")
    ),
)


@dataclass(frozen=True, slots=True)
class PatternMatch:
    """A dangerous pattern hit."""

    name: str
    category: str


class DangerousPatternCatalog:
    """Immutable, two-phase matcher over a set of dangerous patterns.

    Built once; safe to share across concurrent callers.
    """

    __slots__ = ("_compiled", "_keywords", "_patterns")

    def __init__(self, patterns: Iterable[DangerousPattern]) -> None:
        self._patterns: tuple[DangerousPattern, ...] = tuple(patterns)
        self._compiled: tuple[tuple[DangerousPattern, re.Pattern[str]], ...] = tuple(
            (p, re.compile(p.regex, re.IGNORECASE | re.MULTILINE)) for p in self._patterns
        )
        self._keywords: frozenset[str] = frozenset(
            kw.lower() for p in self._patterns for kw in p.keywords
        )

    @classmethod
    def default(cls, extra: Iterable[DangerousPattern] = ()) -> DangerousPatternCatalog:
        """Build the built-in catalog, optionally extended with configured patterns."""
        return cls((*DEFAULT_PATTERNS, *extra))

    @property
    def patterns(self) -> tuple[DangerousPattern, ...]:
        return self._patterns

    @property
    def keywords(self) -> frozenset[str]:
        return self._keywords

    @property
    def categories(self) -> frozenset[str]:
        return frozenset(p.category for p in self._patterns)

    def has_keyword(self, expression: str) -> bool:
        """Phase 1: does the lowercased expression contain any gating keyword?"""
        lowered = expression.lower()
        return any(kw in lowered for kw in self._keywords)

    def first_match(self, expression: str) -> PatternMatch | None:
        """Return the first dangerous pattern matching ``expression``, if any."""
        if not self.has_keyword(expression):
            return None
        for pattern, compiled in self._compiled:
            if compiled.search(expression):
                return PatternMatch(name=pattern.name, category=pattern.category)
        return None
