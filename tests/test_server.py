from __future__ import annotations

import asyncio
import json

from fastmcp import Client
import pytest
from starlette.requests import Request

from qbml import server
from qbml.services.qbml_service import QBMLServiceManager


async def _tool_names() -> set[str]:
    async with Client(server.mcp) as client:
        return {tool.name for tool in await client.list_tools()}


def test_tools_registered(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QBML_DATABASE_URL", "sqlite+pysqlite:///:memory:")
    try:
        names = asyncio.run(_tool_names())
    finally:
        QBMLServiceManager.reset_instance()
    assert {"execute_qbml", "validate_qbml", "qbml_to_sql"} <= names


def test_health_check() -> None:
    request = Request({"type": "http", "method": "GET", "path": "/health", "headers": []})
    response = asyncio.run(server.health_check(request))
    assert response.status_code == 200
    assert json.loads(response.body) == {"status": "healthy", "service": "qbml-mcp"}
