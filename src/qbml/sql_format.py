"""SQL pretty-printing for ``toSQL``/``dump`` output.

Formatting is best-effort: SQL that sqlparse rejects is returned unchanged.
"""

from __future__ import annotations

from functools import lru_cache

from fastmcp.utilities.logging import get_logger
import sqlparse
from sqlparse.exceptions import SQLParseError

_logger = get_logger(__name__)


@lru_cache(maxsize=256)
def pretty_sql(sql: str) -> str:
    """Return ``sql`` re-indented with upper-case keywords, or unchanged on failure."""
    try:
        formatted = sqlparse.format(sql, reindent=True, keyword_case="upper")
    except SQLParseError as exc:
        _logger.debug("SQL formatting skipped: %s", exc)
        return sql
    return formatted.strip() or sql
