"""
Conversation orchestrator -- the bounded multi-round tool-calling loop.

The orchestrator:
1. Appends the user message to the conversation history
2. Calls the model with the full history and tool schemas
3. Drains the whole response stream through ``StreamProcessor``
4. Runs tool batches sequentially, each call gated by policy and the
   ConfirmationGate, then loops back to the model
5. Emits the final answer as ``content`` events once the model stops
   asking for tools
6. Stops after ``max_rounds`` rounds, on transport failure, or when
   cancelled

Every step is guarded by a per-turn ``ChatStateMachine``.  The sequence of
``TurnEvent`` objects yielded by ``run`` always ends with exactly one
``done`` or ``error`` event.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator

from wrench.agent.cancellation import iterate_cancellable, race_cancel
from wrench.agent.confirmation import (
    ConfirmationGate,
    ConfirmationRequest,
    DenyAllGate,
    SessionContext,
)
from wrench.agent.events import (
    TerminationReason,
    TurnEvent,
    content_event,
    done_event,
    error_event,
    thinking_event,
    token_count_event,
    tool_calls_event,
    tool_result_event,
)
from wrench.agent.history import Conversation, ToolExecutionRecord
from wrench.agent.state_machine import ChatStateMachine, Trigger
from wrench.errors import (
    IllegalStateTransition,
    RoundBudgetExceeded,
    TransportError,
    TurnCancelled,
)
from wrench.llm.router import LLMRouter
from wrench.llm.stream_processor import StreamProcessor
from wrench.llm.types import Message, ProcessResult, ToolCall
from wrench.tools.executor import ToolExecutor
from wrench.tools.policy import PolicyEngine
from wrench.tools.registry import ToolRegistry
from wrench.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)

# Word plus trailing whitespace, or a whitespace run; chunks re-join losslessly.
_CHUNK_RE = re.compile(r"\S+\s*|\s+")

BUDGET_NOTICE = (
    "Maximum tool execution rounds reached ({max_rounds}). "
    "Stopping to prevent an endless loop."
)


class RoundBudgetPolicy(str, Enum):
    """What a turn does when it runs out of tool rounds."""

    ERROR = "error"
    FINAL_RESPONSE = "final_response"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Batch:
    """Bookkeeping for one round's tool calls."""

    content: str
    calls: tuple[ToolCall, ...]
    results: list[ToolResult] = field(default_factory=list)
    records: list[ToolExecutionRecord] = field(default_factory=list)


class ConversationOrchestrator:
    """
    Main orchestrator loop.

    Parameters
    ----------
    router : LLMRouter
        Model transport.
    registry : ToolRegistry
        Registered tools.
    policy : PolicyEngine
        Decides whether a call may run and whether it needs confirmation.
    conversation : Conversation
        History shared by every turn of this conversation.
    session : SessionContext
        Holds the "don't ask again" confirmation flags.
    confirmation_gate : ConfirmationGate
        UI boundary asked before side-effecting tools.  Without one every
        confirmation is declined.
    token_counter :
        Object with ``count_messages(messages, tools)``; the active provider
        is used when omitted.
    system_prompt : str
        Prepended to every model call.
    tool_timeout : float
        Max seconds for a single tool execution.
    max_rounds : int
        Default tool-round budget per turn.
    budget_policy : RoundBudgetPolicy
        Behaviour once the budget is used up.
    confirmation_timeout : float | None
        Seconds to wait for the gate; ``None`` waits forever.
    progress : asyncio.Queue | None
        Advisory ``StreamProgress`` channel for live UI counters.
    request_timeout : float
        Passed to the transport for each model call.
    """

    def __init__(
        self,
        router: LLMRouter,
        registry: ToolRegistry,
        policy: PolicyEngine,
        *,
        conversation: Conversation | None = None,
        session: SessionContext | None = None,
        confirmation_gate: ConfirmationGate | None = None,
        token_counter: Any = None,
        system_prompt: str = "",
        tool_timeout: float = 120.0,
        max_rounds: int = 400,
        budget_policy: RoundBudgetPolicy = RoundBudgetPolicy.ERROR,
        confirmation_timeout: float | None = None,
        progress: asyncio.Queue | None = None,
        request_timeout: float = 120.0,
    ) -> None:
        self.router = router
        self.registry = registry
        self.policy = policy
        self.conversation = conversation or Conversation()
        self.session = session or SessionContext()
        self.confirmation_gate = confirmation_gate or DenyAllGate()
        self.token_counter = token_counter
        self.system_prompt = system_prompt
        self.executor = ToolExecutor(registry, timeout=tool_timeout)
        self.max_rounds = max_rounds
        self.budget_policy = RoundBudgetPolicy(budget_policy)
        self.confirmation_timeout = confirmation_timeout
        self.progress = progress
        self.request_timeout = request_timeout

        self.state_machine: ChatStateMachine | None = None
        self._cancel: asyncio.Event | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Signal the running turn to stop at its next suspension point."""
        if self._cancel is not None:
            self._cancel.set()

    def can_stream_content(self) -> bool:
        return self.state_machine is not None and self.state_machine.can_stream_content()

    def can_show_thinking(self) -> bool:
        return self.state_machine is not None and self.state_machine.can_show_thinking()

    async def run(
        self,
        user_message: str,
        max_rounds: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[TurnEvent]:
        """
        Process one user message through the full loop.

        Yields ``TurnEvent`` objects for UI rendering.  *cancel* may be set
        from elsewhere to stop the turn; ``cancel()`` does the same.
        """
        limit = self.max_rounds if max_rounds is None else max_rounds
        if limit < 1:
            raise ValueError(f"max_rounds must be >= 1, got {limit}")
        if self._running:
            raise RuntimeError("A turn is already running for this conversation")

        self._running = True
        self._cancel = cancel if cancel is not None else asyncio.Event()
        machine = ChatStateMachine()
        self.state_machine = machine
        round_no = 0

        try:
            self.conversation.add_user(user_message)
            tools_schema = self.registry.to_openai_schema() or None

            count = self._count_tokens(tools_schema)
            if count is not None:
                yield token_count_event(round_no, count)

            machine.fire(Trigger.USER_MESSAGE)

            while True:
                round_no += 1
                logger.debug("Round %d/%d", round_no, limit)
                yield thinking_event(round_no)

                result = await self._request(tools_schema)

                if result.thinking and machine.can_show_thinking():
                    yield thinking_event(round_no, result.thinking)

                if not result.has_tool_calls:
                    machine.fire(Trigger.CONTENT_READY, round=round_no)
                    async for event in self._emit_content(round_no, result.content, machine):
                        yield event
                    self.conversation.add_assistant(result.content)

                    count = self._count_tokens(tools_schema)
                    if count is not None:
                        yield token_count_event(round_no, count)

                    machine.fire(Trigger.CONTENT_EMITTED)
                    logger.info("Turn completed after %d round(s)", round_no)
                    yield done_event(round_no)
                    return

                machine.fire(
                    Trigger.TOOL_CALLS_PLANNED,
                    round=round_no,
                    tool_calls=len(result.tool_calls),
                )
                yield tool_calls_event(round_no, result.tool_calls)
                machine.fire(Trigger.TOOLS_STARTED)

                batch = _Batch(content=result.content, calls=result.tool_calls)
                try:
                    for call in result.tool_calls:
                        record = await self._execute_tool_call(call, machine)
                        batch.results.append(record.result)
                        batch.records.append(record)
                        yield tool_result_event(round_no, call, record.result)
                finally:
                    self._commit_batch(batch)

                count = self._count_tokens(tools_schema)
                if count is not None:
                    yield token_count_event(round_no, count)

                if round_no >= limit:
                    async for event in self._exhaust_budget(round_no, limit, machine):
                        yield event
                    return

                machine.fire(Trigger.TOOLS_FINISHED)

        except TurnCancelled as exc:
            machine.fail(reason="cancelled")
            logger.info("Turn cancelled in round %d", round_no)
            yield error_event(round_no, TerminationReason.CANCELLED, exc.message, code=exc.code)
        except TransportError as exc:
            machine.fail(reason="transport_error")
            logger.warning("Transport error in round %d: %s", round_no, exc.message)
            yield error_event(
                round_no,
                TerminationReason.TRANSPORT_ERROR,
                exc.message,
                code=exc.code,
                details=exc.context,
            )
        except IllegalStateTransition as exc:
            machine.fail(reason="state_violation")
            logger.error("State machine violation: %s", exc.message)
            yield error_event(
                round_no,
                TerminationReason.STATE_VIOLATION,
                exc.message,
                code=exc.code,
                details=exc.context,
            )
        except asyncio.CancelledError:
            machine.fail(reason="task_cancelled")
            raise
        finally:
            if not machine.is_complete():
                # Consumer stopped iterating before a terminal event.
                machine.fail(reason="abandoned")
            self._running = False
            self._cancel = None

    # ------------------------------------------------------------------
    # Model call
    # ------------------------------------------------------------------

    def _messages_for_model(self) -> list[Message]:
        messages = list(self.conversation.messages)
        if self.system_prompt:
            messages = [Message(role="system", content=self.system_prompt)] + messages
        return messages

    async def _request(self, tools_schema: list[dict] | None) -> ProcessResult:
        stream = self.router.chat(
            self._messages_for_model(),
            tools=tools_schema,
            stream=True,
            timeout=self.request_timeout,
        )
        processor = StreamProcessor(progress=self.progress)
        return await processor.process(iterate_cancellable(stream, self._cancel))

    # ------------------------------------------------------------------
    # Final answer
    # ------------------------------------------------------------------

    async def _emit_content(
        self, round_no: int, text: str, machine: ChatStateMachine
    ) -> AsyncIterator[TurnEvent]:
        for chunk in _CHUNK_RE.findall(text):
            self._check_cancelled()
            if not machine.can_stream_content():
                raise IllegalStateTransition(machine.state, "stream_content")
            yield content_event(round_no, chunk)
            # Give a concurrent canceller a chance to run between chunks.
            await asyncio.sleep(0)
        self._check_cancelled()

    async def _exhaust_budget(
        self, round_no: int, limit: int, machine: ChatStateMachine
    ) -> AsyncIterator[TurnEvent]:
        exc = RoundBudgetExceeded(limit)
        logger.warning("%s (policy=%s)", exc.message, self.budget_policy.value)

        if self.budget_policy is RoundBudgetPolicy.FINAL_RESPONSE:
            machine.fire(Trigger.TOOLS_EXHAUSTED, round=round_no)
            notice = BUDGET_NOTICE.format(max_rounds=limit)
            async for event in self._emit_content(round_no, notice, machine):
                yield event
            self.conversation.add_assistant(notice)
            machine.fire(Trigger.CONTENT_EMITTED)
            yield done_event(round_no, TerminationReason.ROUND_BUDGET_EXCEEDED)
            return

        machine.fire(Trigger.FAILURE, reason="round_budget_exceeded")
        yield error_event(
            round_no,
            TerminationReason.ROUND_BUDGET_EXCEEDED,
            exc.message,
            code=exc.code,
            details=exc.context,
        )

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tool_call(
        self, call: ToolCall, machine: ChatStateMachine
    ) -> ToolExecutionRecord:
        """
        Run one call through the lifecycle and record it.

        Steps:
        1. Reject calls whose arguments never parsed
        2. Registry lookup and schema validation
        3. Policy check
        4. Confirmation (unless suppressed for the operation class)
        5. Execute
        """
        if not machine.can_execute_tools():
            raise IllegalStateTransition(machine.state, "execute_tool")
        self._check_cancelled()

        started = _now()
        result = await self._resolve_tool_call(call)
        record = ToolExecutionRecord(
            tool_call_id=call.id,
            request=call,
            result=result,
            started_at=started,
            finished_at=_now(),
        )
        logger.debug(
            "Tool %s (%s) finished in %d ms, success=%s",
            call.name, call.id, record.duration_ms, result.success,
        )
        return record

    async def _resolve_tool_call(self, call: ToolCall) -> ToolResult:
        # 1. Unparseable arguments never reach policy, gate or tool.
        if not call.ok:
            logger.info("Tool call %s has invalid arguments: %s", call.id, call.error)
            return ToolResult(
                success=False,
                content=f"Invalid arguments for tool '{call.name or '?'}': {call.error}",
                error=call.error,
                error_code=ErrorCode.INVALID_ARGUMENTS,
                metadata={"raw_arguments": call.raw_arguments[:500]},
            )

        # 2. Lookup + validation
        tool, failure = self.executor.prepare(call.name, call.arguments)
        if failure is not None:
            return failure
        assert tool is not None

        # 3. Policy
        decision = self.policy.check(tool, call.arguments)
        if not decision.allowed:
            return ToolResult(
                success=False,
                content=f"Policy blocked: {decision.reason}",
                error=decision.reason,
                error_code=ErrorCode.POLICY_BLOCK,
            )

        # 4. Confirmation
        if decision.requires_confirmation and decision.operation_class is not None:
            request = ConfirmationRequest(
                operation=decision.operation_class,
                tool_name=call.name,
                description=tool.describe_call(call.arguments),
                arguments=call.arguments,
            )
            confirmation = await race_cancel(
                self.session.confirm(
                    self.confirmation_gate, request, timeout=self.confirmation_timeout
                ),
                self._cancel,
            )
            if not confirmation.approved:
                reason = confirmation.feedback or "User declined confirmation"
                return ToolResult(
                    success=False,
                    content=f"Tool call declined by user: {reason}",
                    error=reason,
                    error_code=ErrorCode.DECLINED,
                )

        # 5. Execute
        return await race_cancel(self.executor.run(tool, call.arguments), self._cancel)

    def _commit_batch(self, batch: _Batch) -> None:
        """Append a round's tool exchange to history, padding unrun calls."""
        results = list(batch.results)
        for call in batch.calls[len(results):]:
            results.append(
                ToolResult(
                    success=False,
                    content="Not executed: the turn was interrupted",
                    error="Turn interrupted before this call ran",
                    error_code=ErrorCode.CANCELLED,
                )
            )
        self.conversation.add_tool_batch(
            batch.content, list(batch.calls), results, batch.records
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise TurnCancelled()

    def _count_tokens(self, tools_schema: list[dict] | None) -> int | None:
        try:
            if self.token_counter is not None:
                return self.token_counter.count_messages(
                    self._messages_for_model(), tools_schema
                )
            return self.router.count_tokens(self._messages_for_model(), tools_schema)
        except Exception:
            logger.debug("Token estimation failed", exc_info=True)
            return None
