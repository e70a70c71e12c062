"""
Drains a whole fragment stream and returns one finalized ``ProcessResult``.

The processor is the single place that decides what a model response *is*:
nothing the model streamed becomes visible until the stream has ended,
so a response that starts as prose and turns into a tool call is never
shown half-way.

Finalization rules at stream end:

  1. ``finish_reason`` is the last one seen, ``stop`` if none was sent.
  2. If it is ``tool_calls``, or any draft has a name and JSON-parseable
     arguments, every draft is finalized.  A draft whose arguments do not
     parse into a JSON object becomes a *failed* ``ToolCall`` -- it is kept
     in the batch so the failure reaches the model instead of vanishing.
  3. Otherwise the response is plain content and ``tool_calls`` is empty.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterable

from wrench.errors import ToolArgumentError, TransportError, TurnCancelled
from wrench.llm.accumulator import StreamAccumulator
from wrench.llm.types import (
    AccumulatedMessage,
    FinishReason,
    ProcessResult,
    ResponseFragment,
    StreamProgress,
    ToolCall,
    ToolCallDraft,
)

logger = logging.getLogger(__name__)

_FINISH_ALIASES = {
    "function_call": FinishReason.TOOL_CALLS,
    "max_tokens": FinishReason.LENGTH,
}


class StreamProcessor:
    """
    Consumes one model stream.

    Parameters
    ----------
    progress:
        Optional advisory channel.  Receives ``StreamProgress`` counters as
        fragments arrive; never receives content text.  Updates are dropped
        when the queue is full.
    """

    def __init__(self, progress: asyncio.Queue | None = None) -> None:
        self.progress = progress

    async def process(
        self, fragments: AsyncIterable[ResponseFragment]
    ) -> ProcessResult:
        """
        Drain *fragments* completely and return the finalized result.

        Any failure of the underlying stream is raised as ``TransportError``.
        Cancellation passes through unchanged.
        """
        accumulator = StreamAccumulator()
        try:
            async for fragment in fragments:
                accumulator.feed(fragment)
                self._publish(accumulator.message)
        except (TurnCancelled, asyncio.CancelledError):
            raise
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(
                f"Model stream failed: {exc}",
                context={"error_type": type(exc).__name__},
            ) from exc

        return finalize(accumulator.message)

    def _publish(self, message: AccumulatedMessage) -> None:
        if self.progress is None:
            return
        update = StreamProgress(
            thinking_chars=len(message.thinking),
            content_chars=len(message.content),
            tool_calls=len(message.drafts),
        )
        try:
            self.progress.put_nowait(update)
        except asyncio.QueueFull:
            pass


def finalize(message: AccumulatedMessage) -> ProcessResult:
    """Turn an accumulated message into an immutable ``ProcessResult``."""
    finish_reason = normalize_finish_reason(message.finish_reason)
    drafts = message.tool_calls

    tool_calls: tuple[ToolCall, ...] = ()
    if drafts and (
        finish_reason is FinishReason.TOOL_CALLS
        or any(_is_complete(d) for d in drafts)
    ):
        tool_calls = tuple(_finalize_draft(d) for d in drafts)
        failed = [tc for tc in tool_calls if not tc.ok]
        if failed:
            logger.warning(
                "%d of %d tool calls have unusable arguments",
                len(failed),
                len(tool_calls),
            )
    elif drafts:
        logger.debug(
            "Discarding %d incomplete tool call drafts (finish_reason=%s)",
            len(drafts),
            finish_reason.value,
        )

    return ProcessResult(
        thinking=message.thinking,
        content=message.content,
        tool_calls=tool_calls,
        finish_reason=finish_reason,
    )


def normalize_finish_reason(raw: str | None) -> FinishReason:
    if not raw:
        return FinishReason.STOP
    try:
        return FinishReason(raw)
    except ValueError:
        pass
    if raw in _FINISH_ALIASES:
        return _FINISH_ALIASES[raw]
    logger.warning("Unknown finish_reason %r, treating as stop", raw)
    return FinishReason.STOP


def parse_arguments(raw: str) -> dict:
    """
    Parse a tool-call argument string.

    An empty string means "no arguments".  Raises ``ToolArgumentError`` when
    the text is not JSON or not a JSON object.
    """
    try:
        value = json.loads(raw or "{}")
    except (json.JSONDecodeError, ValueError) as exc:
        raise ToolArgumentError(
            f"Tool arguments are not valid JSON: {exc}",
            context={"arguments": raw[:200]},
        ) from exc
    if not isinstance(value, dict):
        raise ToolArgumentError(
            f"Tool arguments must be a JSON object, got {type(value).__name__}",
            context={"arguments": raw[:200]},
        )
    return value


def _is_complete(draft: ToolCallDraft) -> bool:
    # Argument text must have arrived; "" only means {} once the model
    # has declared tool_calls.
    if not draft.name.strip() or not draft.arguments.strip():
        return False
    try:
        parse_arguments(draft.arguments)
    except ToolArgumentError:
        return False
    return True


def _finalize_draft(draft: ToolCallDraft) -> ToolCall:
    call_id = draft.id or f"call_{draft.call_index}"
    name = draft.name.strip()

    if not name:
        return ToolCall(
            id=call_id,
            name="",
            raw_arguments=draft.arguments,
            error="Tool call has no function name",
        )

    try:
        arguments = parse_arguments(draft.arguments)
    except ToolArgumentError as exc:
        return ToolCall(
            id=call_id,
            name=name,
            raw_arguments=draft.arguments,
            error=exc.message,
        )

    return ToolCall(
        id=call_id,
        name=name,
        arguments=arguments,
        raw_arguments=draft.arguments,
    )
