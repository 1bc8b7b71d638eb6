"""MCP tool registration for QBML (execute_qbml, validate_qbml, qbml_to_sql).

Tool bodies are thin: the work happens in ``run_qbml_execute`` and friends,
which take the interpreter as an argument so they can be tested without a
running server. QBML failures come back as typed ``status="error"`` payloads;
database errors are reported the same way with ``error_kind="DatabaseError"``.
"""

from __future__ import annotations

import json
import time
from typing import Annotated, Any, Final

from fastmcp import Context, FastMCP
from fastmcp.utilities.logging import get_logger
from pydantic import Field
from sqlalchemy.exc import SQLAlchemyError

from qbml.engine import QBML
from qbml.exceptions import QBMLError
from qbml.models import ExecuteOptions, NativeResultSet, QBMLExecuteResult, ValidationResult
from qbml.services.qbml_service import QBMLServiceManager
from qbml.tabular import from_native

_logger = get_logger(__name__)

MAX_QUERY_DISPLAY: Final[int] = 200


def _preview(query: Any) -> str:
    text = json.dumps(query, default=str)
    return text[:MAX_QUERY_DISPLAY] + ("..." if len(text) > MAX_QUERY_DISPLAY else "")


def _wire(result: Any) -> Any:
    """Native result sets are not JSON; send them in tabular form."""
    if isinstance(result, NativeResultSet):
        return from_native(result).to_wire()
    if isinstance(result, dict) and isinstance(result.get("results"), NativeResultSet):
        return {**result, "results": from_native(result["results"]).to_wire()}
    return result


def run_qbml_execute(
    qbml: QBML,
    query: list[dict[str, Any]],
    *,
    params: dict[str, Any] | None = None,
    return_format: str | list[Any] | None = None,
) -> QBMLExecuteResult:
    """Execute a QBML definition and wrap the outcome in a typed result.

    Designed to be short and dependency-injected for easy testing.
    """
    options = ExecuteOptions(params=params or {}, return_format=return_format)
    executor: str | None = None
    effective: str | None = None
    start = time.perf_counter()
    try:
        call, parsed = qbml.resolve_executor(query, options)
        executor = qbml.registry.canonical_executor(call.name) or call.name
        effective = parsed.format
        result = qbml.execute(query, options)
    except QBMLError as exc:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        _logger.warning("QBML rejected query (%s): %s", exc.kind, exc.message)
        return QBMLExecuteResult(
            status="error",
            executor=executor,
            elapsed_ms=elapsed_ms,
            error_kind=exc.kind,
            error_message=exc.message,
        )
    except SQLAlchemyError as exc:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        _logger.warning("Execution error: %s", exc)
        return QBMLExecuteResult(
            status="error",
            executor=executor,
            elapsed_ms=elapsed_ms,
            error_kind="DatabaseError",
            error_message=str(exc),
        )

    elapsed_ms = (time.perf_counter() - start) * 1000.0
    return QBMLExecuteResult(
        status="ok",
        executor=executor,
        return_format=effective,
        result=_wire(result),
        elapsed_ms=elapsed_ms,
    )


def run_qbml_to_sql(qbml: QBML, query: list[dict[str, Any]], params: dict[str, Any] | None = None) -> str:
    """Return the SQL for ``query``; QBML failures are reported as ``-- error`` text."""
    try:
        return qbml.to_sql(query, params or {})
    except QBMLError as exc:
        _logger.warning("qbml_to_sql rejected query (%s): %s", exc.kind, exc.message)
        return f"-- {exc.kind}: {exc.message}"


def register_qbml_tools(mcp: FastMCP, *, manager: QBMLServiceManager | None = None) -> None:
    """Register the QBML tools on ``mcp``."""

    mgr = manager or QBMLServiceManager.get_instance()

    @mcp.tool
    async def execute_qbml(
        ctx: Context,
        query: Annotated[
            list[dict[str, Any]],
            Field(
                description=(
                    "QBML query definition: an ordered array of action objects, e.g. "
                    '[{"from": "users"}, {"select": ["id", "name"]}, {"get": true}]. '
                    'Values may use {"$param": "name"} and {"$raw": "sql"} markers.'
                )
            ),
        ],
        params: Annotated[
            dict[str, Any] | None,
            Field(description="Runtime parameter values referenced by $param markers"),
        ] = None,
        return_format: Annotated[
            str | list[Any] | None,
            Field(
                description=(
                    "'array', 'tabular', 'query', or ['struct', columnKey, valueKeys?]; "
                    "overrides the format declared in the query"
                )
            ),
        ] = None,
    ) -> QBMLExecuteResult:  # pyright: ignore[reportUnusedFunction]
        """Validate, assemble, and run a QBML query definition.

        Security checks (table/action/executor policies and dangerous raw SQL)
        run before any SQL is built. On error, error_kind names the failure.
        """
        _logger.info("execute_qbml: %s", _preview(query))
        result = run_qbml_execute(
            mgr.get_qbml(), query, params=params, return_format=return_format
        )
        if result.status == "error":
            await ctx.warning(f"{result.error_kind}: {result.error_message}")
        return result

    @mcp.tool
    async def validate_qbml(
        query: Annotated[
            list[dict[str, Any]],
            Field(description="QBML query definition to check without executing it"),
        ],
    ) -> ValidationResult:  # pyright: ignore[reportUnusedFunction]
        """Run the whole-query security check only; no SQL is built or executed."""
        return mgr.get_qbml().validate(query)

    @mcp.tool
    async def qbml_to_sql(
        query: Annotated[
            list[dict[str, Any]],
            Field(description="QBML query definition to compile"),
        ],
        params: Annotated[
            dict[str, Any] | None,
            Field(description="Runtime parameter values referenced by $param markers"),
        ] = None,
    ) -> str:  # pyright: ignore[reportUnusedFunction]
        """Compile a QBML query definition to SQL for the active database without running it."""
        return run_qbml_to_sql(mgr.get_qbml(), query, params)
