"""Process-wide QBML wiring for the MCP surface.

Provides a singleton that owns the database engine and one ``QBML``
interpreter. Registries and the pattern catalog are immutable after
construction, so the interpreter is shared across requests; each call gets a
fresh builder from the factory.
"""

from __future__ import annotations

import threading
from typing import ClassVar

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa

from qbml.actions.registry import ActionRegistry
from qbml.builder.sqlalchemy_builder import SqlAlchemyQueryBuilder
from qbml.engine import QBML
from qbml.models import QBMLConfig
from qbml.services.config_service import ConfigService

_logger = get_logger(__name__)


class QBMLServiceManager:
    """Singleton manager for the engine and interpreter."""

    _instance: ClassVar[QBMLServiceManager | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        self._engine: sa.Engine | None = None
        self._qbml: QBML | None = None
        self._init_lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> QBMLServiceManager:
        """Get the singleton instance of QBMLServiceManager."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Dispose the current instance (used by tests and shutdown)."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.shutdown()
            cls._instance = None

    def initialize(
        self, engine: sa.Engine | None = None, config: QBMLConfig | None = None
    ) -> QBML:
        """Create the engine and interpreter once; later calls return the same one.

        Args:
            engine: Engine to use instead of one built from ``QBML_DATABASE_URL``
            config: Configuration to use instead of ``ConfigService.load_config()``
        """
        with self._init_lock:
            if self._qbml is not None:
                return self._qbml
            self._engine = engine or ConfigService.create_database_engine(
                ConfigService.get_database_url()
            )
            cfg = config or ConfigService.load_config()
            registry = ActionRegistry()
            bound_engine = self._engine
            self._qbml = QBML(
                lambda: SqlAlchemyQueryBuilder(bound_engine, registry=registry),
                cfg,
                registry=registry,
            )
            _logger.info(
                "QBML initialized (dialect=%s, tables=%s, actions=%s, executors=%s)",
                bound_engine.dialect.name,
                cfg.security.tables.mode,
                cfg.security.actions.mode,
                cfg.security.executors.mode,
            )
            return self._qbml

    def get_qbml(self) -> QBML:
        """Return the interpreter, initializing from the environment on first use."""
        return self._qbml if self._qbml is not None else self.initialize()

    def shutdown(self) -> None:
        with self._init_lock:
            if self._engine is not None:
                self._engine.dispose()
            self._engine = None
            self._qbml = None
