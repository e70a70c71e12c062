"""Conversation turn: state machine, confirmation, and the tool loop."""

from wrench.agent.confirmation import (
    AutoApproveGate,
    ConfirmationGate,
    ConfirmationRequest,
    ConfirmationResult,
    DenyAllGate,
    SessionContext,
)
from wrench.agent.events import TerminationReason, TurnEvent, TurnEventType
from wrench.agent.history import Conversation, ToolExecutionRecord
from wrench.agent.orchestrator import ConversationOrchestrator, RoundBudgetPolicy
from wrench.agent.state_machine import ChatState, ChatStateMachine, Trigger

__all__ = [
    "AutoApproveGate",
    "ChatState",
    "ChatStateMachine",
    "ConfirmationGate",
    "ConfirmationRequest",
    "ConfirmationResult",
    "Conversation",
    "ConversationOrchestrator",
    "DenyAllGate",
    "RoundBudgetPolicy",
    "SessionContext",
    "TerminationReason",
    "ToolExecutionRecord",
    "Trigger",
    "TurnEvent",
    "TurnEventType",
]
