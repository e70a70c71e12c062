"""LLM subsystem -- providers, routing, and stream processing."""

from wrench.llm.types import (
    AccumulatedMessage,
    FinishReason,
    Message,
    ProcessResult,
    RawToolDelta,
    ResponseFragment,
    StreamProgress,
    ToolCall,
    ToolCallDraft,
)
from wrench.llm.accumulator import StreamAccumulator, fold
from wrench.llm.router import LLMRouter
from wrench.llm.stream_processor import StreamProcessor
from wrench.llm.token_counter import TokenCounter

__all__ = [
    "AccumulatedMessage",
    "FinishReason",
    "LLMRouter",
    "Message",
    "ProcessResult",
    "RawToolDelta",
    "ResponseFragment",
    "StreamAccumulator",
    "StreamProcessor",
    "StreamProgress",
    "TokenCounter",
    "ToolCall",
    "ToolCallDraft",
    "fold",
]
