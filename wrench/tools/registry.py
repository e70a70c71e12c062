from __future__ import annotations

import re

from wrench.tools.base import Tool, ToolRisk
from wrench.tools.validation import ToolValidator

# Function names the chat-completions API accepts.
_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ToolRegistry:
    """Tools offered to the model, keyed by name."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        """
        Add *tool*.

        Raises ``ValueError`` for a duplicate name (unless *overwrite*), a
        name the API would reject, or a malformed parameter schema.
        """
        if not _NAME_RE.match(tool.name):
            raise ValueError(f"Invalid tool name: {tool.name!r}")
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        ToolValidator.check_schema(tool)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        tool = self.get(name)
        if tool is None:
            raise KeyError(name)
        return tool

    def list(self, max_risk: ToolRisk | None = None) -> list[Tool]:
        """Registered tools sorted by name, optionally capped at *max_risk*."""
        tools = sorted(self._tools.values(), key=lambda t: t.name)
        if max_risk is None:
            return tools
        return [t for t in tools if t.risk_level <= max_risk]

    def to_openai_schema(self, max_risk: ToolRisk | None = None) -> list[dict]:
        return [t.to_openai_schema() for t in self.list(max_risk)]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
