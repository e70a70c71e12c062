"""
Folds streamed response fragments into one ``AccumulatedMessage``.

Design goals:
  - Concatenate thinking and content deltas in arrival order.
  - Merge ``RawToolDelta`` fragments keyed by ``call_index``; indices may be
    sparse or arrive out of numeric order.
  - Never parse tool arguments here.  Partial JSON is only judged once the
    whole stream has been seen (see ``StreamProcessor``).
"""

from __future__ import annotations

import logging

from wrench.llm.types import (
    AccumulatedMessage,
    RawToolDelta,
    ResponseFragment,
    ToolCallDraft,
)

logger = logging.getLogger(__name__)


def fold(current: AccumulatedMessage, fragment: object) -> AccumulatedMessage:
    """
    Merge *fragment* into *current* in place and return *current*.

    Objects that are not ``ResponseFragment`` instances are ignored.
    """
    if not isinstance(fragment, ResponseFragment):
        logger.debug("Ignoring unrecognised fragment: %r", fragment)
        return current

    if fragment.thinking:
        current.thinking += fragment.thinking

    if fragment.delta:
        current.content += fragment.delta

    if fragment.tool_deltas:
        for td in fragment.tool_deltas:
            if isinstance(td, RawToolDelta):
                _merge_tool_delta(current, td)

    if fragment.finish_reason:
        current.finish_reason = fragment.finish_reason

    return current


def _merge_tool_delta(current: AccumulatedMessage, delta: RawToolDelta) -> None:
    idx = delta.call_index if delta.call_index is not None else 0
    draft = current.drafts.get(idx)
    if draft is None:
        draft = current.drafts[idx] = ToolCallDraft(call_index=idx)

    if delta.id and not draft.id:
        draft.id = delta.id

    if delta.name_delta:
        draft.name += delta.name_delta

    if delta.args_delta:
        draft.arguments += delta.args_delta


class StreamAccumulator:
    """Owns the single ``AccumulatedMessage`` of one stream."""

    def __init__(self) -> None:
        self.message = AccumulatedMessage()

    def feed(self, fragment: object) -> AccumulatedMessage:
        return fold(self.message, fragment)
