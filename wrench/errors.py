"""
Error taxonomy for a conversation turn.

Tool-level failures (``ToolArgumentError``, ``ToolExecutionError``) are
recovered locally by the orchestrator and turned into failed tool results.
Everything else ends the turn and is reported through an ``error`` event.
"""

from __future__ import annotations

from typing import Any


class WrenchError(Exception):
    """Base class carrying a machine-readable code and optional context."""

    default_code = "wrench_error"
    recoverable = False

    def __init__(
        self,
        message: str,
        code: str | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "recoverable": self.recoverable,
            "context": self.context,
        }

    def format_for_user(self) -> str:
        lines = [self.message]
        for key, value in self.context.items():
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)


class TransportError(WrenchError):
    """The model stream failed before it completed."""

    default_code = "transport_error"


class ToolArgumentError(WrenchError):
    """A tool call's argument string could not be parsed."""

    default_code = "invalid_arguments"
    recoverable = True


class ToolExecutionError(WrenchError):
    """A tool ran and failed."""

    default_code = "tool_execution_error"
    recoverable = True

    def __init__(self, tool_name: str, message: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.tool_name = tool_name
        self.context.setdefault("tool", tool_name)


class IllegalStateTransition(WrenchError):
    """A trigger was fired in a state that does not accept it."""

    default_code = "state_violation"

    def __init__(self, state: Any, trigger: Any) -> None:
        state_name = getattr(state, "value", state)
        trigger_name = getattr(trigger, "value", trigger)
        super().__init__(
            f"Illegal transition: {trigger_name!s} is not accepted in state {state_name!s}",
            context={"state": state_name, "trigger": trigger_name},
        )
        self.state = state
        self.trigger = trigger


class RoundBudgetExceeded(WrenchError):
    """The turn used every tool round it was allowed."""

    default_code = "round_budget_exceeded"
    recoverable = True

    def __init__(self, max_rounds: int) -> None:
        super().__init__(
            f"Reached the maximum of {max_rounds} tool rounds for this turn",
            context={"max_rounds": max_rounds},
        )
        self.max_rounds = max_rounds


class TurnCancelled(WrenchError):
    """The user cancelled the turn."""

    default_code = "cancelled"
    recoverable = True

    def __init__(self, message: str = "Operation cancelled by user") -> None:
        super().__init__(message)
