"""
Tool executor -- runs one parsed tool call and always returns a ``ToolResult``.

Steps:
1. Registry lookup
2. Validate args against the tool's JSON schema
3. Execute with timeout
4. Turn exceptions into failed results

Policy and confirmation sit between ``prepare`` and ``run``; the orchestrator
drives them.
"""

from __future__ import annotations

import asyncio
import logging

from wrench.errors import ToolExecutionError
from wrench.tools.base import Tool
from wrench.tools.registry import ToolRegistry
from wrench.tools.validation import ToolValidator
from wrench.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)


class ToolExecutor:
    """
    Parameters
    ----------
    registry : ToolRegistry
        Registered tools.
    timeout : float
        Max seconds for a single tool execution.  ``0`` disables the limit.
    """

    def __init__(self, registry: ToolRegistry, timeout: float = 120.0) -> None:
        self.registry = registry
        self.timeout = timeout

    def prepare(self, name: str, arguments: dict) -> tuple[Tool | None, ToolResult | None]:
        """
        Look up and validate a call.

        Returns ``(tool, None)`` when the call may run, or ``(tool_or_None,
        failure)`` when it must not.
        """
        tool = self.registry.get(name)
        if tool is None:
            return None, ToolResult(
                success=False,
                content=f"Unknown tool: {name}",
                error=f"Unknown tool: {name}",
                error_code=ErrorCode.UNKNOWN_TOOL,
            )

        valid, error_msg = ToolValidator.validate(tool, arguments)
        if not valid:
            return tool, ToolResult(
                success=False,
                content=f"Validation error: {error_msg}",
                error=error_msg,
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        return tool, None

    async def run(self, tool: Tool, arguments: dict) -> ToolResult:
        """Execute an already validated call."""
        try:
            if self.timeout:
                result = await asyncio.wait_for(
                    tool.execute(**arguments), timeout=self.timeout
                )
            else:
                result = await tool.execute(**arguments)
        except asyncio.TimeoutError:
            return ToolResult(
                success=False,
                content=f"Tool timed out after {self.timeout}s",
                error=f"Timeout after {self.timeout}s",
                error_code=ErrorCode.TIMEOUT,
            )
        except ToolExecutionError as e:
            return ToolResult(
                success=False,
                content=e.message,
                error=e.message,
                error_code=e.code,
                metadata=dict(e.context),
            )
        except Exception as e:
            logger.exception("Tool %s raised", tool.name)
            return ToolResult(
                success=False,
                content=f"Tool exception: {e}",
                error=str(e),
                error_code=ErrorCode.TOOL_EXCEPTION,
            )

        return result

    async def execute(self, name: str, arguments: dict) -> ToolResult:
        """Look up, validate and run a call in one step."""
        tool, failure = self.prepare(name, arguments)
        if failure is not None:
            return failure
        assert tool is not None
        return await self.run(tool, arguments)
