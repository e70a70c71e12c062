"""
Provider for endpoints that speak the OpenAI ``/chat/completions`` protocol.

Covers OpenAI itself as well as Z.ai/GLM, DeepSeek, vLLM, LM Studio and
similar servers.  Streaming responses are Server-Sent Events; each
``data:`` payload becomes one ``ResponseFragment``.  Reasoning deltas
(``reasoning_content``) are surfaced as thinking text.

Only ``httpx`` is needed, not the ``openai`` SDK.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

from wrench.llm.providers.base import Provider
from wrench.llm.token_counter import TokenCounter
from wrench.llm.types import Message, RawToolDelta, ResponseFragment

logger = logging.getLogger(__name__)


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _wire_message(msg: Message) -> dict:
    out: dict = {"role": msg.role, "content": msg.content}
    if msg.tool_calls:
        out["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": tc.arguments_json},
            }
            for tc in msg.tool_calls
        ]
    if msg.tool_call_id:
        out["tool_call_id"] = msg.tool_call_id
    return out


def _tool_deltas(raw_calls: list[dict] | None, *, indexed: bool) -> list[RawToolDelta] | None:
    """
    Convert wire tool calls to deltas.

    Streamed calls carry their own ``index``; a complete (non-streamed)
    message lists calls in order.
    """
    if not raw_calls:
        return None
    deltas = []
    for position, raw in enumerate(raw_calls):
        func = raw.get("function") or {}
        deltas.append(
            RawToolDelta(
                call_index=raw.get("index", 0) if indexed else position,
                id=raw.get("id"),
                name_delta=func.get("name") or "",
                args_delta=func.get("arguments") or "",
            )
        )
    return deltas


class OpenAICompatProvider(Provider):
    """
    Parameters
    ----------
    url:
        API base, e.g. ``"https://api.openai.com/v1"``.
    model:
        Sent as the ``model`` field.
    api_key:
        Bearer token; ``""`` for unauthenticated local servers.
    timeout:
        Default HTTP timeout in seconds.
    max_retries:
        Extra attempts on 429/5xx or a connection failure, only while no
        fragment has been yielded.
    max_context, max_output:
        Token limits reported to callers; *max_output* is sent as
        ``max_tokens``.
    temperature:
        Omitted from the request when ``None``.
    transport:
        httpx transport override, e.g. ``httpx.MockTransport``.
    """

    def __init__(
        self,
        url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        api_key: str = "",
        timeout: float = 120.0,
        max_retries: int = 2,
        max_context: int = 128_000,
        max_output: int = 4096,
        temperature: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = url.rstrip("/") + "/chat/completions"
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._max_context = max_context
        self._max_output = max_output
        self._temperature = temperature
        self._transport = transport
        self._counter = TokenCounter(model)

    @property
    def name(self) -> str:
        return "openai-compat"

    @property
    def model(self) -> str:
        return self._model

    def set_model(self, model: str) -> None:
        self._model = model
        self._counter = TokenCounter(model)

    @property
    def max_context_tokens(self) -> int:
        return self._max_context

    @property
    def max_output_tokens(self) -> int:
        return self._max_output

    def count_tokens(self, messages: list[Message], tools: list[dict] | None = None) -> int:
        return self._counter.count_messages(messages, tools)

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        stream: bool = True,
        timeout: float = 30.0,
    ) -> AsyncIterator[ResponseFragment]:
        body = self._request_body(messages, tools, stream)
        timeout = timeout or self._timeout
        if stream:
            async for fragment in self._stream(body, timeout):
                yield fragment
        else:
            yield await self._complete(body, timeout)

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def _headers(self, stream: bool) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _request_body(self, messages: list[Message], tools: list[dict] | None, stream: bool) -> dict:
        body: dict = {
            "model": self._model,
            "messages": [_wire_message(m) for m in messages],
            "stream": stream,
            "max_tokens": self._max_output,
        }
        if self._temperature is not None:
            body["temperature"] = self._temperature
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        return body

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream(self, body: dict, timeout: float) -> AsyncIterator[ResponseFragment]:
        headers = self._headers(stream=True)
        attempts = 1 + self._max_retries
        for attempt in range(1, attempts + 1):
            yielded = False
            try:
                async with self._client(timeout) as client:
                    async with client.stream("POST", self._endpoint, json=body, headers=headers) as response:
                        if _is_retryable(response.status_code) and attempt < attempts:
                            # Drain so the connection is released.
                            await response.aread()
                            logger.warning(
                                "HTTP %d from %s, retrying (%d/%d)",
                                response.status_code, self._endpoint, attempt, attempts,
                            )
                            continue
                        if response.is_error:
                            await response.aread()
                            response.raise_for_status()

                        async for fragment in self._read_events(response):
                            yielded = True
                            yield fragment
                        return
            except httpx.TransportError as exc:
                if yielded or attempt >= attempts:
                    raise
                logger.warning("Connection failed before the first fragment: %s", exc)

    async def _read_events(self, response: httpx.Response) -> AsyncIterator[ResponseFragment]:
        """
        Yield one fragment per SSE ``data:`` payload until ``[DONE]``.

        Unparseable payloads are skipped; an in-band ``error`` object ends
        the stream with ``httpx.StreamError``.
        """
        async for line in response.aiter_lines():
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                return
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("Skipping unparseable SSE payload: %s", data[:200])
                continue

            if payload.get("error") and not payload.get("choices"):
                raise httpx.StreamError(f"Provider error: {payload['error']}")

            choices = payload.get("choices")
            if not choices:
                continue
            delta = choices[0].get("delta") or {}
            yield ResponseFragment(
                delta=delta.get("content") or "",
                thinking=delta.get("reasoning_content") or "",
                tool_deltas=_tool_deltas(delta.get("tool_calls"), indexed=True),
                finish_reason=choices[0].get("finish_reason"),
            )

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def _complete(self, body: dict, timeout: float) -> ResponseFragment:
        """Send one non-streaming request and return the whole reply as a fragment."""
        headers = self._headers(stream=False)
        attempts = 1 + self._max_retries
        for attempt in range(1, attempts + 1):
            try:
                async with self._client(timeout) as client:
                    resp = await client.post(self._endpoint, json=body, headers=headers)
            except httpx.TransportError:
                if attempt >= attempts:
                    raise
                continue
            if _is_retryable(resp.status_code) and attempt < attempts:
                continue
            resp.raise_for_status()
            return self._reply_fragment(resp.json())
        raise AssertionError("retry loop exited without a response")  # pragma: no cover

    @staticmethod
    def _reply_fragment(payload: dict) -> ResponseFragment:
        choices = payload.get("choices") or []
        if not choices:
            return ResponseFragment(finish_reason="stop")
        message = choices[0].get("message") or {}
        return ResponseFragment(
            delta=message.get("content") or "",
            thinking=message.get("reasoning_content") or "",
            tool_deltas=_tool_deltas(message.get("tool_calls"), indexed=False),
            finish_reason=choices[0].get("finish_reason") or "stop",
        )
