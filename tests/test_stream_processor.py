"""Tests for wrench.llm.stream_processor."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from tests.mock_providers import (
    malformed_tool_call_fragments,
    multi_tool_call_fragments,
    text_fragments,
    tool_call_fragments,
)
from wrench.errors import ToolArgumentError, TransportError, TurnCancelled
from wrench.llm.stream_processor import (
    StreamProcessor,
    normalize_finish_reason,
    parse_arguments,
)
from wrench.llm.types import FinishReason, RawToolDelta, ResponseFragment, StreamProgress


async def _stream(fragments):
    for f in fragments:
        yield f


async def _process(fragments, progress=None):
    return await StreamProcessor(progress=progress).process(_stream(fragments))


class TestPlainContent:
    async def test_text_response(self):
        result = await _process(text_fragments("Hello there, friend."))
        assert result.content == "Hello there, friend."
        assert result.tool_calls == ()
        assert result.finish_reason is FinishReason.STOP
        assert not result.has_tool_calls

    async def test_missing_finish_reason_is_stop(self):
        result = await _process([ResponseFragment(delta="hi")])
        assert result.finish_reason is FinishReason.STOP

    async def test_thinking_collected(self):
        result = await _process(text_fragments("Answer", thinking="pondering"))
        assert result.thinking == "pondering"
        assert result.content == "Answer"

    async def test_empty_stream(self):
        result = await _process([])
        assert result.content == ""
        assert result.tool_calls == ()


class TestToolCalls:
    async def test_single_call(self):
        result = await _process(tool_call_fragments("echo", {"message": "hi"}, call_id="call_1"))
        assert result.finish_reason is FinishReason.TOOL_CALLS
        assert len(result.tool_calls) == 1
        tc = result.tool_calls[0]
        assert tc.id == "call_1"
        assert tc.name == "echo"
        assert tc.arguments == {"message": "hi"}
        assert tc.ok

    async def test_multiple_calls_in_index_order(self):
        result = await _process(multi_tool_call_fragments([
            ("echo", {"message": "a"}, "call_a"),
            ("shell", {"command": "ls"}, "call_b"),
        ]))
        assert [tc.id for tc in result.tool_calls] == ["call_a", "call_b"]
        assert [tc.name for tc in result.tool_calls] == ["echo", "shell"]

    async def test_prose_kept_alongside_calls(self):
        result = await _process(
            tool_call_fragments("echo", {"message": "x"}, content_prefix="Let me check. ")
        )
        assert result.content == "Let me check. "
        assert result.has_tool_calls

    async def test_complete_draft_without_tool_calls_finish(self):
        fragments = [
            ResponseFragment(tool_deltas=[RawToolDelta(call_index=0, id="c", name_delta="echo",
                                                       args_delta='{"message": "x"}')]),
            ResponseFragment(finish_reason="stop"),
        ]
        result = await _process(fragments)
        assert len(result.tool_calls) == 1
        assert result.tool_calls[0].arguments == {"message": "x"}

    async def test_incomplete_draft_without_tool_calls_finish_discarded(self):
        fragments = [
            ResponseFragment(delta="Here you go"),
            ResponseFragment(tool_deltas=[RawToolDelta(call_index=0, name_delta="echo",
                                                       args_delta='{"mess')]),
            ResponseFragment(finish_reason="length"),
        ]
        result = await _process(fragments)
        assert result.tool_calls == ()
        assert result.finish_reason is FinishReason.LENGTH
        assert result.content == "Here you go"

    async def test_name_only_draft_cut_off_is_not_a_call(self):
        fragments = [
            ResponseFragment(delta="Let me run "),
            ResponseFragment(tool_deltas=[RawToolDelta(call_index=0, id="c", name_delta="bash")]),
            ResponseFragment(finish_reason="length"),
        ]
        result = await _process(fragments)
        assert result.tool_calls == ()
        assert result.finish_reason is FinishReason.LENGTH
        assert result.content == "Let me run "

    async def test_empty_arguments_mean_no_arguments(self):
        fragments = [
            ResponseFragment(tool_deltas=[RawToolDelta(call_index=0, id="c", name_delta="list_files")]),
            ResponseFragment(finish_reason="tool_calls"),
        ]
        result = await _process(fragments)
        assert result.tool_calls[0].arguments == {}
        assert result.tool_calls[0].ok

    async def test_missing_id_synthesized_from_index(self):
        fragments = [
            ResponseFragment(tool_deltas=[RawToolDelta(call_index=3, name_delta="echo",
                                                       args_delta='{"message": "x"}')]),
            ResponseFragment(finish_reason="tool_calls"),
        ]
        result = await _process(fragments)
        assert result.tool_calls[0].id == "call_3"


class TestMalformedCalls:
    async def test_invalid_json_becomes_failed_call(self):
        result = await _process(malformed_tool_call_fragments())
        assert len(result.tool_calls) == 1
        tc = result.tool_calls[0]
        assert not tc.ok
        assert tc.name == "echo"
        assert tc.raw_arguments == '{"key": INVALID_JSON'
        assert "not valid JSON" in tc.error
        assert tc.arguments == {}

    async def test_non_object_arguments_fail(self):
        fragments = [
            ResponseFragment(tool_deltas=[RawToolDelta(call_index=0, id="c", name_delta="echo",
                                                       args_delta="[1, 2]")]),
            ResponseFragment(finish_reason="tool_calls"),
        ]
        result = await _process(fragments)
        assert not result.tool_calls[0].ok
        assert "JSON object" in result.tool_calls[0].error

    async def test_missing_name_fails(self):
        fragments = [
            ResponseFragment(tool_deltas=[RawToolDelta(call_index=0, id="c", args_delta="{}")]),
            ResponseFragment(finish_reason="tool_calls"),
        ]
        result = await _process(fragments)
        assert result.tool_calls[0].error == "Tool call has no function name"

    async def test_bad_call_does_not_drop_good_one(self):
        fragments = [
            ResponseFragment(tool_deltas=[
                RawToolDelta(call_index=0, id="good", name_delta="echo", args_delta='{"message": "ok"}'),
                RawToolDelta(call_index=1, id="bad", name_delta="echo", args_delta="{oops"),
            ]),
            ResponseFragment(finish_reason="tool_calls"),
        ]
        result = await _process(fragments)
        assert [tc.ok for tc in result.tool_calls] == [True, False]


class TestFailures:
    async def test_stream_exception_becomes_transport_error(self):
        async def broken():
            yield ResponseFragment(delta="partial")
            raise httpx.ReadError("connection reset")

        with pytest.raises(TransportError) as exc_info:
            await StreamProcessor().process(broken())
        assert "connection reset" in exc_info.value.message
        assert exc_info.value.context["error_type"] == "ReadError"
        assert isinstance(exc_info.value.__cause__, httpx.ReadError)

    async def test_transport_error_passes_through(self):
        async def broken():
            raise TransportError("already mapped")
            yield  # pragma: no cover

        with pytest.raises(TransportError, match="already mapped"):
            await StreamProcessor().process(broken())

    async def test_cancellation_passes_through(self):
        async def cancelled():
            yield ResponseFragment(delta="x")
            raise TurnCancelled()

        with pytest.raises(TurnCancelled):
            await StreamProcessor().process(cancelled())


class TestProgress:
    async def test_progress_counters(self):
        queue: asyncio.Queue = asyncio.Queue()
        await _process(
            [
                ResponseFragment(thinking="abc"),
                ResponseFragment(delta="hello"),
                ResponseFragment(tool_deltas=[RawToolDelta(call_index=0, name_delta="echo")]),
            ],
            progress=queue,
        )
        updates = []
        while not queue.empty():
            updates.append(queue.get_nowait())
        assert updates[-1] == StreamProgress(thinking_chars=3, content_chars=5, tool_calls=1)
        assert len(updates) == 3

    async def test_full_queue_drops_updates(self):
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        result = await _process(text_fragments("one two three four"), progress=queue)
        assert result.content == "one two three four"
        assert queue.qsize() == 1


class TestHelpers:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (None, FinishReason.STOP),
            ("", FinishReason.STOP),
            ("stop", FinishReason.STOP),
            ("tool_calls", FinishReason.TOOL_CALLS),
            ("function_call", FinishReason.TOOL_CALLS),
            ("length", FinishReason.LENGTH),
            ("max_tokens", FinishReason.LENGTH),
            ("content_filter", FinishReason.STOP),
        ],
    )
    def test_normalize_finish_reason(self, raw, expected):
        assert normalize_finish_reason(raw) is expected

    def test_parse_arguments(self):
        assert parse_arguments("") == {}
        assert parse_arguments('{"a": 1}') == {"a": 1}
        with pytest.raises(ToolArgumentError):
            parse_arguments('"just a string"')
        with pytest.raises(ToolArgumentError) as exc_info:
            parse_arguments("{bad")
        assert exc_info.value.code == "invalid_arguments"
