"""Configuration service for qbml-mcp.

Centralizes environment variable handling, builds the ``QBMLConfig`` used by
the interpreter, and creates the database engine for the SQLAlchemy builder.
Nothing here is persisted; the environment is the only source.
"""

from __future__ import annotations

import os
from typing import Final, get_args

import sqlalchemy as sa

from qbml.models import (
    FormatName,
    QBMLConfig,
    QBMLDefaults,
    SecurityConfig,
    SecurityMode,
    SecurityPolicy,
)

SECURITY_MODES: Final[frozenset[str]] = frozenset(get_args(SecurityMode))
FORMAT_NAMES: Final[frozenset[str]] = frozenset(get_args(FormatName))


def _split_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _int_env(name: str) -> int | None:
    val = os.getenv(name)
    if val is None or not val.strip():
        return None
    try:
        n = int(val)
    except ValueError:
        return None
    return n if n > 0 else None


class ConfigService:
    """Service for managing configuration and database connections."""

    @staticmethod
    def get_database_url() -> str:
        """Get database URL from environment variable.

        Returns:
            Database URL string

        Raises:
            ValueError: If QBML_DATABASE_URL environment variable is not set
        """
        database_url = os.getenv("QBML_DATABASE_URL")
        if not database_url:
            error_msg = "QBML_DATABASE_URL environment variable not set"
            raise ValueError(error_msg)
        return database_url

    @staticmethod
    def create_database_engine(url: str) -> sa.Engine:
        """Create SQLAlchemy database engine.

        Args:
            url: Database connection URL

        Returns:
            SQLAlchemy Engine instance
        """
        return sa.create_engine(url, pool_pre_ping=True)

    # ---- security ----------------------------------------------------------
    @staticmethod
    def security_policy(category: str) -> SecurityPolicy:
        """Read ``QBML_<CATEGORY>_MODE`` / ``QBML_<CATEGORY>_LIST``.

        Unknown modes fall back to ``none`` (permit all).
        """
        prefix = f"QBML_{category.upper()}"
        mode = os.getenv(f"{prefix}_MODE", "none").strip().lower()
        if mode not in SECURITY_MODES:
            mode = "none"
        return SecurityPolicy(mode=mode, entries=_split_list(os.getenv(f"{prefix}_LIST")))

    @staticmethod
    def table_aliases() -> dict[str, str]:
        """Parse ``QBML_TABLE_ALIASES`` (``friendly=actual.table,...``)."""
        aliases: dict[str, str] = {}
        for pair in _split_list(os.getenv("QBML_TABLE_ALIASES")):
            friendly, sep, actual = pair.partition("=")
            if sep and friendly.strip() and actual.strip():
                aliases[friendly.strip()] = actual.strip()
        return aliases

    # ---- execution defaults ------------------------------------------------
    @staticmethod
    def default_timeout() -> int | None:
        """Query timeout in seconds; unset or malformed means no timeout."""
        return _int_env("QBML_DEFAULT_TIMEOUT")

    @staticmethod
    def max_rows() -> int | None:
        """Row ceiling for result-set executors."""
        return _int_env("QBML_MAX_ROWS")

    @staticmethod
    def default_return_format() -> str:
        val = os.getenv("QBML_RETURN_FORMAT", "array").strip().lower()
        return val if val in FORMAT_NAMES and val != "struct" else "array"

    @staticmethod
    def load_config() -> QBMLConfig:
        """Build the complete interpreter configuration from the environment."""
        return QBMLConfig(
            security=SecurityConfig(
                tables=ConfigService.security_policy("tables"),
                actions=ConfigService.security_policy("actions"),
                executors=ConfigService.security_policy("executors"),
            ),
            aliases=ConfigService.table_aliases(),
            defaults=QBMLDefaults(
                timeout=ConfigService.default_timeout(),
                max_rows=ConfigService.max_rows(),
                datasource=os.getenv("QBML_DEFAULT_DATASOURCE") or None,
                return_format=ConfigService.default_return_format(),
            ),
        )
