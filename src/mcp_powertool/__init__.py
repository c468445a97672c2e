"""mcp-powertool: MCP proxy aggregating many backend servers behind one endpoint."""

__version__ = "0.3.0"
