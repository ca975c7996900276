"""Tools the summarizer may call, their contracts and the gateway."""

from .contracts import TOOL_REGISTRY, ToolContract, ToolName, ToolParameter
from .gateway import ToolGateway

__all__ = ["TOOL_REGISTRY", "ToolContract", "ToolGateway", "ToolName", "ToolParameter"]
