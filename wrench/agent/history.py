"""
In-memory conversation history.

Holds the ``Message`` list sent to the model and the immutable
``ToolExecutionRecord`` log.  Only the orchestrator writes to it, and only
between rounds.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from wrench.llm.types import Message, ToolCall
from wrench.types import ToolResult


@dataclass(frozen=True)
class ToolExecutionRecord:
    tool_call_id: str
    request: ToolCall
    result: ToolResult
    started_at: datetime
    finished_at: datetime

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


def tool_message_content(result: ToolResult) -> str:
    """Text the model sees for a tool result."""
    if result.success:
        return result.content or "Success"
    if result.error and result.error != result.content:
        return f"[Error: {result.error_code}] {result.error}: {result.content}"
    return f"[Error: {result.error_code}] {result.content or result.error or 'failed'}"


class Conversation:
    """
    Ordered message history of one conversation.

    The system prompt is not stored here; it is prepended on every call.
    """

    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.records: list[ToolExecutionRecord] = []

    def add_user(self, content: str) -> None:
        self.messages.append(Message(role="user", content=content))

    def add_assistant(self, content: str, tool_calls: list[ToolCall] | None = None) -> None:
        self.messages.append(
            Message(role="assistant", content=content, tool_calls=tool_calls or None)
        )

    def add_tool_batch(
        self,
        content: str,
        calls: list[ToolCall],
        results: list[ToolResult],
        records: list[ToolExecutionRecord],
    ) -> None:
        """Append one round's assistant tool-call message and its results."""
        self.add_assistant(content, list(calls))
        for call, result in zip(calls, results):
            self.messages.append(
                Message(
                    role="tool",
                    content=tool_message_content(result),
                    tool_call_id=call.id,
                )
            )
        self.records.extend(records)

    def clear(self) -> None:
        self.messages = []
        self.records = []

    def __len__(self) -> int:
        return len(self.messages)
