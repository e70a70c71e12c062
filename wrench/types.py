"""Value types shared by tools, policy and the orchestrator."""

from dataclasses import dataclass, field
from enum import Enum


class OperationClass(str, Enum):
    """Confirmation scope for side-effecting tools."""

    FILE = "file"
    SHELL = "shell"


class ErrorCode:
    """``ToolResult.error_code`` values produced outside the tools themselves."""

    # Rejected before the tool runs
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    VALIDATION_ERROR = "validation_error"
    POLICY_BLOCK = "policy_block"
    DECLINED = "declined"

    # Raised while running
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    CANCELLED = "cancelled"


@dataclass
class ToolResult:
    """
    Outcome of one tool call.

    ``content`` is what the model sees in the tool message; ``data`` is a
    structured copy for callers.  Failures set ``success=False`` plus
    ``error`` and, where one applies, ``error_code``.
    """

    success: bool
    content: str
    data: dict | list | None = None
    error: str | None = None
    error_code: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class PolicyDecision:
    allowed: bool
    reason: str
    requires_confirmation: bool = False
    operation_class: OperationClass | None = None
