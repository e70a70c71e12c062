"""Tests for wrench.agent.state_machine."""

from __future__ import annotations

import itertools

import pytest

from wrench.agent.state_machine import (
    TERMINAL_STATES,
    TRANSITIONS,
    ChatState,
    ChatStateMachine,
    Trigger,
)
from wrench.errors import IllegalStateTransition

# Triggers that reach each state from idle.
_PATHS: dict[ChatState, list[Trigger]] = {
    ChatState.IDLE: [],
    ChatState.THINKING: [Trigger.USER_MESSAGE],
    ChatState.PLANNING_TOOLS: [Trigger.USER_MESSAGE, Trigger.TOOL_CALLS_PLANNED],
    ChatState.EXECUTING_TOOLS: [
        Trigger.USER_MESSAGE, Trigger.TOOL_CALLS_PLANNED, Trigger.TOOLS_STARTED,
    ],
    ChatState.RESPONDING: [Trigger.USER_MESSAGE, Trigger.CONTENT_READY],
    ChatState.DONE: [Trigger.USER_MESSAGE, Trigger.CONTENT_READY, Trigger.CONTENT_EMITTED],
    ChatState.ERROR: [Trigger.USER_MESSAGE, Trigger.FAILURE],
}

_EXPECTED = {
    (ChatState.IDLE, Trigger.USER_MESSAGE): ChatState.THINKING,
    (ChatState.THINKING, Trigger.TOOL_CALLS_PLANNED): ChatState.PLANNING_TOOLS,
    (ChatState.THINKING, Trigger.CONTENT_READY): ChatState.RESPONDING,
    (ChatState.PLANNING_TOOLS, Trigger.TOOLS_STARTED): ChatState.EXECUTING_TOOLS,
    (ChatState.EXECUTING_TOOLS, Trigger.TOOLS_FINISHED): ChatState.THINKING,
    (ChatState.EXECUTING_TOOLS, Trigger.TOOLS_EXHAUSTED): ChatState.RESPONDING,
    (ChatState.RESPONDING, Trigger.CONTENT_EMITTED): ChatState.DONE,
    (ChatState.IDLE, Trigger.FAILURE): ChatState.ERROR,
    (ChatState.THINKING, Trigger.FAILURE): ChatState.ERROR,
    (ChatState.PLANNING_TOOLS, Trigger.FAILURE): ChatState.ERROR,
    (ChatState.EXECUTING_TOOLS, Trigger.FAILURE): ChatState.ERROR,
    (ChatState.RESPONDING, Trigger.FAILURE): ChatState.ERROR,
}


def _machine_in(state: ChatState) -> ChatStateMachine:
    m = ChatStateMachine()
    for trigger in _PATHS[state]:
        m.fire(trigger)
    assert m.state is state
    return m


class TestTransitionTable:
    def test_table_matches_expected(self):
        assert TRANSITIONS == _EXPECTED

    @pytest.mark.parametrize(
        "state, trigger",
        list(itertools.product(ChatState, Trigger)),
        ids=lambda v: v.value,
    )
    def test_every_pair(self, state, trigger):
        m = _machine_in(state)
        target = _EXPECTED.get((state, trigger))
        if target is None:
            with pytest.raises(IllegalStateTransition) as exc_info:
                m.fire(trigger)
            assert exc_info.value.state is state
            assert exc_info.value.trigger is trigger
            assert exc_info.value.code == "state_violation"
            assert m.state is state
        else:
            assert m.fire(trigger) is target
            assert m.state is target

    def test_terminal_states_accept_nothing(self):
        for state in TERMINAL_STATES:
            m = _machine_in(state)
            assert not any(m.accepts(t) for t in Trigger)


class TestGuards:
    @pytest.mark.parametrize("state", list(ChatState), ids=lambda s: s.value)
    def test_guards(self, state):
        m = _machine_in(state)
        assert m.can_stream_content() is (state is ChatState.RESPONDING)
        assert m.can_execute_tools() is (state is ChatState.EXECUTING_TOOLS)
        assert m.can_show_thinking() is (state in (ChatState.THINKING, ChatState.PLANNING_TOOLS))
        assert m.is_complete() is (state in TERMINAL_STATES)
        assert m.is_error() is (state is ChatState.ERROR)

    def test_streaming_and_tools_never_both_allowed(self):
        for state in ChatState:
            m = _machine_in(state)
            assert not (m.can_stream_content() and m.can_execute_tools())


class TestHistoryAndReset:
    def test_history_records_transitions(self):
        m = ChatStateMachine()
        m.fire(Trigger.USER_MESSAGE)
        m.fire(Trigger.TOOL_CALLS_PLANNED, tool_calls=2)
        hist = m.history
        assert [(h.from_state, h.to_state, h.trigger) for h in hist] == [
            (ChatState.IDLE, ChatState.THINKING, Trigger.USER_MESSAGE),
            (ChatState.THINKING, ChatState.PLANNING_TOOLS, Trigger.TOOL_CALLS_PLANNED),
        ]
        assert hist[1].metadata == {"tool_calls": 2}
        assert m.duration() >= 0.0

    def test_history_is_a_copy(self):
        m = ChatStateMachine()
        m.fire(Trigger.USER_MESSAGE)
        m.history.clear()
        assert len(m.history) == 1

    def test_rejected_trigger_not_recorded(self):
        m = ChatStateMachine()
        with pytest.raises(IllegalStateTransition):
            m.fire(Trigger.CONTENT_EMITTED)
        assert m.history == []

    def test_reset(self):
        m = _machine_in(ChatState.DONE)
        m.reset()
        assert m.state is ChatState.IDLE
        assert m.history == []
        m.fire(Trigger.USER_MESSAGE)
        assert m.state is ChatState.THINKING

    def test_fail_from_non_terminal(self):
        m = _machine_in(ChatState.EXECUTING_TOOLS)
        assert m.fail(reason="boom") is True
        assert m.is_error()
        assert m.history[-1].metadata == {"reason": "boom"}

    def test_fail_is_noop_when_terminal(self):
        m = _machine_in(ChatState.DONE)
        assert m.fail() is False
        assert m.state is ChatState.DONE
