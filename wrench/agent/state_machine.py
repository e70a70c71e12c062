"""
Finite state machine for a single conversation turn.

The orchestrator fires a ``Trigger`` before every state-dependent action.
Anything not listed in ``TRANSITIONS`` raises ``IllegalStateTransition``,
which keeps content streaming and tool execution from ever interleaving.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from wrench.errors import IllegalStateTransition


class ChatState(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    PLANNING_TOOLS = "planning_tools"
    EXECUTING_TOOLS = "executing_tools"
    RESPONDING = "responding"
    DONE = "done"
    ERROR = "error"


class Trigger(str, Enum):
    USER_MESSAGE = "user_message"
    TOOL_CALLS_PLANNED = "tool_calls_planned"
    CONTENT_READY = "content_ready"
    TOOLS_STARTED = "tools_started"
    TOOLS_FINISHED = "tools_finished"
    TOOLS_EXHAUSTED = "tools_exhausted"
    CONTENT_EMITTED = "content_emitted"
    FAILURE = "failure"


TERMINAL_STATES = frozenset({ChatState.DONE, ChatState.ERROR})

TRANSITIONS: dict[tuple[ChatState, Trigger], ChatState] = {
    (ChatState.IDLE, Trigger.USER_MESSAGE): ChatState.THINKING,
    (ChatState.THINKING, Trigger.TOOL_CALLS_PLANNED): ChatState.PLANNING_TOOLS,
    (ChatState.THINKING, Trigger.CONTENT_READY): ChatState.RESPONDING,
    (ChatState.PLANNING_TOOLS, Trigger.TOOLS_STARTED): ChatState.EXECUTING_TOOLS,
    (ChatState.EXECUTING_TOOLS, Trigger.TOOLS_FINISHED): ChatState.THINKING,
    (ChatState.EXECUTING_TOOLS, Trigger.TOOLS_EXHAUSTED): ChatState.RESPONDING,
    (ChatState.RESPONDING, Trigger.CONTENT_EMITTED): ChatState.DONE,
}
for _state in ChatState:
    if _state not in TERMINAL_STATES:
        TRANSITIONS[(_state, Trigger.FAILURE)] = ChatState.ERROR
del _state


@dataclass(frozen=True)
class StateTransition:
    from_state: ChatState
    to_state: ChatState
    trigger: Trigger
    timestamp: float = field(default_factory=time.monotonic)
    metadata: dict[str, Any] = field(default_factory=dict)


class ChatStateMachine:
    """
    Guards the sequence of a turn.

    One instance belongs to exactly one turn; ``reset`` returns it to
    ``idle`` for reuse.
    """

    def __init__(self) -> None:
        self._state = ChatState.IDLE
        self._history: list[StateTransition] = []

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    def accepts(self, trigger: Trigger) -> bool:
        return (self._state, trigger) in TRANSITIONS

    def fire(self, trigger: Trigger, **metadata: Any) -> ChatState:
        """
        Apply *trigger* and return the new state.

        Raises ``IllegalStateTransition`` if the current state does not
        accept it; the state is left unchanged.
        """
        target = TRANSITIONS.get((self._state, trigger))
        if target is None:
            raise IllegalStateTransition(self._state, trigger)
        self._history.append(
            StateTransition(self._state, target, trigger, metadata=metadata)
        )
        self._state = target
        return target

    def fail(self, **metadata: Any) -> bool:
        """Move to ``error`` if the machine is not already terminal."""
        if not self.accepts(Trigger.FAILURE):
            return False
        self.fire(Trigger.FAILURE, **metadata)
        return True

    def reset(self) -> None:
        self._state = ChatState.IDLE
        self._history = []

    # ------------------------------------------------------------------
    # Guards (pure queries)
    # ------------------------------------------------------------------

    def can_stream_content(self) -> bool:
        return self._state is ChatState.RESPONDING

    def can_execute_tools(self) -> bool:
        return self._state is ChatState.EXECUTING_TOOLS

    def can_show_thinking(self) -> bool:
        return self._state in (ChatState.THINKING, ChatState.PLANNING_TOOLS)

    def is_complete(self) -> bool:
        return self._state in TERMINAL_STATES

    def is_error(self) -> bool:
        return self._state is ChatState.ERROR

    def duration(self) -> float:
        """Seconds between the first and the last transition."""
        if not self._history:
            return 0.0
        return self._history[-1].timestamp - self._history[0].timestamp
