"""Core types for the LLM subsystem."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class FinishReason(str, Enum):
    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "user", "assistant", "system", "tool"
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None


@dataclass(frozen=True)
class ToolCall:
    """
    A finalized tool call.

    When the accumulated argument string could not be turned into a JSON
    object, ``error`` describes why and ``arguments`` is empty.  Such a call
    is still part of the batch; it just never reaches the tool.
    """

    id: str
    name: str
    arguments: dict = field(default_factory=dict)
    raw_arguments: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def arguments_json(self) -> str:
        """Argument string to send back to the model in history."""
        if self.error is not None:
            return self.raw_arguments
        return json.dumps(self.arguments)


@dataclass
class RawToolDelta:
    """
    An incremental delta for a streaming tool call.

    Providers emit these as tool-call fragments arrive.  The accumulator
    merges deltas that share a ``call_index``.
    """

    call_index: int | None = 0
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""


@dataclass
class ResponseFragment:
    """
    One incremental unit of a streamed model response.

    *delta* carries new answer text, *thinking* carries reasoning text,
    *tool_deltas* carries tool-call fragments and *finish_reason* is set on
    the fragment that ends the stream.
    """

    delta: str = ""
    thinking: str = ""
    tool_deltas: list[RawToolDelta] | None = None
    finish_reason: str | None = None


@dataclass
class ToolCallDraft:
    """A tool call still being streamed; ``arguments`` is never parsed here."""

    call_index: int
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class AccumulatedMessage:
    """
    Mutable aggregate of every fragment seen so far in one stream.

    Owned by a single ``StreamProcessor`` run and mutated in place.
    """

    thinking: str = ""
    content: str = ""
    drafts: dict[int, ToolCallDraft] = field(default_factory=dict)
    finish_reason: str | None = None

    @property
    def tool_calls(self) -> list[ToolCallDraft]:
        """Drafts ordered by their declared index, not by arrival."""
        return [self.drafts[idx] for idx in sorted(self.drafts)]


@dataclass(frozen=True)
class ProcessResult:
    """
    The complete assistant response after consuming the full stream.

    Produced by ``StreamProcessor.process``.
    """

    thinking: str
    content: str
    tool_calls: tuple[ToolCall, ...]
    finish_reason: FinishReason

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass(frozen=True)
class StreamProgress:
    """Advisory counters published while a stream is being drained."""

    thinking_chars: int
    content_chars: int
    tool_calls: int
