"""Tool model, registry, policy and execution."""

from wrench.tools.base import Tool, ToolRisk
from wrench.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolRegistry", "ToolRisk"]
