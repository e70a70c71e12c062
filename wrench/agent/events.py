"""
Turn event model.

``ConversationOrchestrator.run`` yields ``TurnEvent`` objects.  The sequence
for one turn is an append-only log ending in exactly one terminal event
(``done`` or ``error``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from wrench.llm.types import ToolCall
from wrench.types import ToolResult


# ---------------------------------------------------------------------------
# Event and outcome kinds
# ---------------------------------------------------------------------------


class TurnEventType(str, Enum):
    THINKING = "thinking"
    TOOL_CALLS = "tool_calls"
    TOOL_RESULT = "tool_result"
    CONTENT = "content"
    TOKEN_COUNT = "token_count"
    DONE = "done"
    ERROR = "error"


class TerminationReason(str, Enum):
    COMPLETED = "completed"
    ROUND_BUDGET_EXCEEDED = "round_budget_exceeded"
    CANCELLED = "cancelled"
    TRANSPORT_ERROR = "transport_error"
    STATE_VIOLATION = "state_violation"


TERMINAL_EVENTS = frozenset({TurnEventType.DONE, TurnEventType.ERROR})


@dataclass(frozen=True)
class TurnEvent:
    """
    A single UI-facing event.

    Attributes
    ----------
    type:
        What happened.
    round:
        1-based round the event belongs to (0 before the first model call).
    content:
        Text for ``thinking`` / ``content`` events, message for ``error``.
    tool_calls:
        The whole batch for ``tool_calls`` events.
    tool_call, result:
        Set on ``tool_result`` events.
    token_count:
        Estimated history size for ``token_count`` events.
    reason, code:
        Set on terminal events.
    """

    type: TurnEventType
    round: int = 0
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call: ToolCall | None = None
    result: ToolResult | None = None
    token_count: int | None = None
    reason: TerminationReason | None = None
    code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def thinking_event(round_no: int, text: str = "") -> TurnEvent:
    """Create a ``thinking`` event; empty *text* marks the start of a round."""
    return TurnEvent(TurnEventType.THINKING, round=round_no, content=text)


def tool_calls_event(round_no: int, calls: tuple[ToolCall, ...]) -> TurnEvent:
    return TurnEvent(TurnEventType.TOOL_CALLS, round=round_no, tool_calls=tuple(calls))


def tool_result_event(round_no: int, call: ToolCall, result: ToolResult) -> TurnEvent:
    return TurnEvent(
        TurnEventType.TOOL_RESULT, round=round_no, tool_call=call, result=result
    )


def content_event(round_no: int, text: str) -> TurnEvent:
    return TurnEvent(TurnEventType.CONTENT, round=round_no, content=text)


def token_count_event(round_no: int, count: int) -> TurnEvent:
    return TurnEvent(TurnEventType.TOKEN_COUNT, round=round_no, token_count=count)


def done_event(
    round_no: int, reason: TerminationReason = TerminationReason.COMPLETED
) -> TurnEvent:
    return TurnEvent(TurnEventType.DONE, round=round_no, reason=reason)


def error_event(
    round_no: int,
    reason: TerminationReason,
    message: str,
    code: str | None = None,
    details: dict[str, Any] | None = None,
) -> TurnEvent:
    return TurnEvent(
        TurnEventType.ERROR,
        round=round_no,
        content=message,
        reason=reason,
        code=code or reason.value,
        details=details or {},
    )
