"""Tests for LLMRouter."""

import pytest

from tests.mock_providers import MockProvider, text_fragments
from wrench.errors import TransportError
from wrench.llm.providers.base import Provider
from wrench.llm.router import LLMRouter
from wrench.llm.types import Message


class TestProviders:
    def test_first_registered_is_active(self):
        router = LLMRouter()
        first, second = MockProvider(), MockProvider()
        router.register_provider("a", first)
        router.register_provider("b", second)
        assert router.active_name == "a"
        assert router.active_provider is first
        assert router.provider_names == ["a", "b"]

    def test_activate_on_register(self):
        router = LLMRouter()
        router.register_provider("a", MockProvider())
        router.register_provider("b", MockProvider(), activate=True)
        assert router.active_name == "b"

    def test_set_active(self):
        router = LLMRouter()
        router.register_provider("a", MockProvider())
        router.register_provider("b", MockProvider())
        router.set_active("b")
        assert router.active_name == "b"
        with pytest.raises(KeyError, match="Unknown provider"):
            router.set_active("c")

    def test_no_provider(self):
        router = LLMRouter()
        assert router.model is None
        with pytest.raises(TransportError) as exc_info:
            router.chat([Message(role="user", content="hi")])
        assert exc_info.value.code == "no_provider"


class TestChat:
    async def test_streams_from_active_provider(self):
        provider = MockProvider([text_fragments("hello world")])
        router = LLMRouter()
        router.register_provider("mock", provider)
        messages = [Message(role="user", content="hi")]
        tools = [{"type": "function", "function": {"name": "echo"}}]

        fragments = [f async for f in router.chat(messages, tools=tools)]
        assert "".join(f.delta for f in fragments) == "hello world"
        assert provider.last_tools == tools

    def test_count_tokens_delegates(self):
        router = LLMRouter()
        router.register_provider("mock", MockProvider())
        assert router.count_tokens([Message(role="user", content="abcd")]) == 4


class FixedModelProvider(Provider):
    name = "fixed"
    max_context_tokens = 1024

    def chat(self, messages, tools=None, stream=True, timeout=30.0):
        raise AssertionError("not called")

    def count_tokens(self, messages, tools=None):
        return 0


class TestModelSwitch:
    def test_set_model_on_active_provider(self):
        router = LLMRouter()
        router.register_provider("a", MockProvider(model_name="small"))
        router.set_model("large")
        assert router.model == "large"

    def test_fixed_model_provider_refuses(self):
        router = LLMRouter()
        router.register_provider("fixed", FixedModelProvider())
        assert router.model is None
        with pytest.raises(NotImplementedError, match="fixed model"):
            router.set_model("other")
