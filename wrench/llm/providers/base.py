"""Abstract model provider."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from wrench.llm.types import Message, ResponseFragment


class Provider(ABC):
    """
    One model endpoint.

    ``chat`` is an async generator of ``ResponseFragment`` objects; the
    fragment that ends the stream carries ``finish_reason`` and any failure
    after the request was sent is raised from the iterator.  Retrying is
    the provider's own business and never happens once a fragment has been
    yielded.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    def model(self) -> str | None:
        return None

    def set_model(self, model: str) -> None:
        raise NotImplementedError(f"Provider {self.name} serves a fixed model")

    @property
    @abstractmethod
    def max_context_tokens(self) -> int: ...

    @property
    def max_output_tokens(self) -> int:
        return 4096

    @abstractmethod
    def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        stream: bool = True,
        timeout: float = 30.0,
    ) -> AsyncIterator[ResponseFragment]: ...

    @abstractmethod
    def count_tokens(self, messages: list[Message], tools: list[dict] | None = None) -> int:
        """Advisory token estimate for *messages* plus tool schemas."""
