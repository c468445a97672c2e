"""Backend connections: transports, live connections, their manager and listings."""

from mcp_powertool.backends.catalog import BackendCatalog
from mcp_powertool.backends.connection import BackendConnection
from mcp_powertool.backends.manager import BackendConnectionManager
from mcp_powertool.backends.transport import create_backend_transport

__all__ = [
    "BackendCatalog",
    "BackendConnection",
    "BackendConnectionManager",
    "create_backend_transport",
]
