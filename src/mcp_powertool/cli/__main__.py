"""Allow running the CLI as ``python -m mcp_powertool.cli``."""

from mcp_powertool.cli.main import main

main()
