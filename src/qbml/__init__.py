"""qbml-mcp: a JSON query-definition interpreter.

A QBML query is an ordered array of action objects (``from``, ``select``,
``where``, ``join``, ...) ending in an executor (``get``, ``count``,
``paginate``, ...). ``QBML`` validates the whole definition against the
configured security policy, drives a ``QueryBuilder`` with it, and shapes
the result into one of the supported return formats. A FastMCP server
exposes the interpreter as tools.
"""

from qbml.builder import QueryBuilder, SqlAlchemyQueryBuilder
from qbml.engine import QBML
from qbml.exceptions import QBMLError, ReturnFormatError, SecurityError
from qbml.models import (
    ExecuteOptions,
    QBMLConfig,
    QBMLDefaults,
    SecurityConfig,
    SecurityPolicy,
    TabularResult,
    ValidationResult,
)
from qbml.services import ConfigService
from qbml.tabular import ReturnFormat

__all__ = [  # noqa: RUF022
    # Interpreter
    "QBML",
    "QueryBuilder",
    "SqlAlchemyQueryBuilder",
    # Configuration and models
    "ExecuteOptions",
    "QBMLConfig",
    "QBMLDefaults",
    "SecurityConfig",
    "SecurityPolicy",
    "TabularResult",
    "ValidationResult",
    # Errors
    "QBMLError",
    "ReturnFormatError",
    "SecurityError",
    # Return formats
    "ReturnFormat",
    # Services
    "ConfigService",
]
