"""
Token estimation backed by ``tiktoken``.

Counts are advisory: they populate ``token_count`` turn events and never
gate control flow.  Models tiktoken does not know use ``cl100k_base``.  If
no encoding can be loaded at all (tiktoken fetches its BPE files on first
use) a ~4 characters per token heuristic is used.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import tiktoken

from wrench.llm.types import Message

logger = logging.getLogger(__name__)

_FALLBACK_ENCODING = "cl100k_base"

# Role markers and separators around each message, and the priming of the
# assistant reply, in the chat-completions format.
MESSAGE_OVERHEAD = 4
REPLY_PRIMING = 3


class TokenCounter:
    """
    Parameters
    ----------
    model:
        Model name passed to ``tiktoken.encoding_for_model``.
    """

    def __init__(self, model: str | None = None) -> None:
        self.model = model
        self._enc: Any = None
        self._loaded = False

    def _encoding(self) -> Any:
        if not self._loaded:
            self._loaded = True
            try:
                try:
                    self._enc = tiktoken.encoding_for_model(self.model or "gpt-4o")
                except KeyError:
                    self._enc = tiktoken.get_encoding(_FALLBACK_ENCODING)
            except Exception:
                # Encoding files unavailable (offline first run).
                logger.debug("tiktoken encoding unavailable, using heuristic", exc_info=True)
        return self._enc

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        enc = self._encoding()
        if enc is None:
            return max(1, len(text) // 4)
        return len(enc.encode(text, disallowed_special=()))

    def count_message(self, message: Message) -> int:
        """Tokens for one history entry, including tool calls and ids."""
        parts = [message.content, message.tool_call_id or ""]
        for call in message.tool_calls or ():
            parts += [call.id, call.name, call.arguments_json]
        return MESSAGE_OVERHEAD + sum(self.count_text(p) for p in parts)

    def count_messages(self, messages: list[Message], tools: list[dict] | None = None) -> int:
        """Estimate the prompt size of a full request, tool schemas included."""
        if not messages and not tools:
            return 0
        total = REPLY_PRIMING + sum(self.count_message(m) for m in messages)
        if tools:
            total += self.count_text(json.dumps(tools, separators=(",", ":")))
        return total
