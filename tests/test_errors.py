"""Tests for the error taxonomy."""

from wrench.errors import (
    IllegalStateTransition,
    RoundBudgetExceeded,
    ToolExecutionError,
    TransportError,
    TurnCancelled,
    WrenchError,
)


class TestWrenchError:
    def test_default_code(self):
        err = TransportError("connection reset")
        assert err.code == "transport_error"
        assert err.recoverable is False
        assert str(err) == "connection reset"

    def test_to_dict(self):
        err = WrenchError("boom", "custom", context={"a": 1})
        assert err.to_dict() == {
            "name": "WrenchError",
            "message": "boom",
            "code": "custom",
            "recoverable": False,
            "context": {"a": 1},
        }

    def test_format_for_user_lists_context(self):
        err = RoundBudgetExceeded(3)
        assert err.format_for_user().splitlines() == [
            "Reached the maximum of 3 tool rounds for this turn",
            "  max_rounds: 3",
        ]


class TestSubclasses:
    def test_tool_execution_error_records_tool(self):
        err = ToolExecutionError("bash", "exploded", code="timeout")
        assert err.recoverable
        assert err.code == "timeout"
        assert err.context == {"tool": "bash"}

    def test_illegal_transition_names_state_and_trigger(self):
        err = IllegalStateTransition("idle", "tools_finished")
        assert err.code == "state_violation"
        assert "tools_finished" in err.message
        assert "idle" in err.message

    def test_cancelled_message(self):
        err = TurnCancelled()
        assert err.code == "cancelled"
        assert err.message == "Operation cancelled by user"
