"""
Model transport as seen by the orchestrator.

The router holds named providers and hands out the active one's
``ResponseFragment`` stream for a full history.  Folding that stream into a
response is ``StreamProcessor``'s job; the router never buffers.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from wrench.errors import TransportError
from wrench.llm.providers.base import Provider
from wrench.llm.types import Message, ResponseFragment

logger = logging.getLogger(__name__)


class LLMRouter:
    """
    Named providers with one active at a time.

    The first provider registered becomes active.
    """

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}
        self._active: str | None = None

    def register_provider(
        self, name: str, provider: Provider, *, activate: bool = False
    ) -> None:
        """Register *provider* under *name*, replacing any previous entry."""
        self._providers[name] = provider
        if activate or self._active is None:
            self._active = name

    def set_active(self, name: str) -> None:
        """Raises ``KeyError`` if *name* has not been registered."""
        if name not in self._providers:
            raise KeyError(f"Unknown provider {name!r}. Registered: {sorted(self._providers)}")
        logger.info("Switching provider %s -> %s", self._active, name)
        self._active = name

    @property
    def active_name(self) -> str | None:
        return self._active

    @property
    def provider_names(self) -> list[str]:
        return sorted(self._providers)

    @property
    def active_provider(self) -> Provider:
        """Raises ``TransportError`` when nothing is registered."""
        provider = self._providers.get(self._active) if self._active else None
        if provider is None:
            raise TransportError("No model provider configured", code="no_provider")
        return provider

    @property
    def model(self) -> str | None:
        """Model identifier of the active provider, if any."""
        if self._active is None:
            return None
        return self.active_provider.model

    def set_model(self, model: str) -> None:
        """Point the active provider at *model* for later requests."""
        provider = self.active_provider
        provider.set_model(model)
        logger.info("Provider %s now uses model %s", self._active, model)

    def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        stream: bool = True,
        timeout: float = 30.0,
    ) -> AsyncIterator[ResponseFragment]:
        """Return the active provider's fragment stream for *messages*."""
        provider = self.active_provider
        logger.debug(
            "Model call via %s: %d messages, %d tools",
            self._active,
            len(messages),
            len(tools or ()),
        )
        return provider.chat(messages, tools=tools, stream=stream, timeout=timeout)

    def count_tokens(self, messages: list[Message], tools: list[dict] | None = None) -> int:
        return self.active_provider.count_tokens(messages, tools)
