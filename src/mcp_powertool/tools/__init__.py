"""Tools implemented by the proxy itself."""

from mcp_powertool.tools.describe_tools import DescribeToolsTool
from mcp_powertool.tools.reload_config import ReloadConfigTool
from mcp_powertool.tools.use_tool import UseToolTool

__all__ = ["DescribeToolsTool", "ReloadConfigTool", "UseToolTool"]
