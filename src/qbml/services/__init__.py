"""Services package for qbml-mcp.

Main Components:
- ConfigService: Environment configuration and database engine creation
- QBMLServiceManager: Process-wide engine and interpreter for the MCP tools
"""

from .config_service import ConfigService
from .qbml_service import QBMLServiceManager

__all__ = [
    "ConfigService",
    "QBMLServiceManager",
]
