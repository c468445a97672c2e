"""Client-facing proxy server: routing, capability snapshots, reload and HTTP/SSE serving."""

from mcp_powertool.server.proxy import ProxyOptions, ProxyServer, ReloadResult

__all__ = ["ProxyOptions", "ProxyServer", "ReloadResult"]
