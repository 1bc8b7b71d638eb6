"""Query builder collaborators: the protocol and the SQLAlchemy reference builder."""

from __future__ import annotations

from .protocol import JoinClause, QueryBuilder, SubQuery
from .sqlalchemy_builder import RawSQL, SqlAlchemyJoinClause, SqlAlchemyQueryBuilder

__all__ = [
    "JoinClause",
    "QueryBuilder",
    "RawSQL",
    "SqlAlchemyJoinClause",
    "SqlAlchemyQueryBuilder",
    "SubQuery",
]
