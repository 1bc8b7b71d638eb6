"""FastMCP server implementation for qbml-mcp."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import dotenv
from fastmcp import FastMCP
from fastmcp.utilities.logging import get_logger
from starlette.requests import Request
from starlette.responses import JSONResponse

from qbml.mcp_tools import register_qbml_tools
from qbml.services.qbml_service import QBMLServiceManager

# Load environment variables
dotenv.load_dotenv()

_logger = get_logger(__name__)


# -- Context Manager for QBML initialization ---------------------------------
@asynccontextmanager
async def lifespan(_mcp_instance: FastMCP) -> AsyncGenerator[None]:
    """FastMCP lifespan context manager for engine and interpreter setup."""
    manager = QBMLServiceManager.get_instance()
    try:
        _logger.info("Initializing QBML during lifespan startup")
        manager.initialize()
        yield
    finally:
        _logger.info("Shutting down QBML during lifespan shutdown")
        manager.shutdown()


mcp = FastMCP(
    instructions=(
        "This provides a QBML Model Context Protocol server. Queries are JSON "
        "arrays of action objects (from, select, where, join, orderBy, ...) "
        "ending in an executor (get, first, count, paginate, ...). Every query "
        "passes table, action, executor and raw-SQL security checks before it runs."
    ),
    lifespan=lifespan,
)

# -- Tool Registration -------------------------------------------------------
register_qbml_tools(mcp)


# -- Health Check ----------------------------------------------------------
@mcp.custom_route("/health", methods=["GET"])
async def health_check(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "healthy", "service": "qbml-mcp"})


# Use fastmcp command to start the server
# fastmcp run src/qbml/server.py
