"""Tests for the CLI surface: typer commands and the chat handler."""

from __future__ import annotations

import asyncio
import io

import pytest
from prompt_toolkit import PromptSession
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput
from rich.console import Console
from typer.testing import CliRunner

from tests.mock_providers import FakeTokenCounter, MockProvider, text_fragments, tool_call_fragments
from tests.mock_tools import EchoTool, ShellTool
from wrench import __version__
from wrench.agent.confirmation import ConfirmationRequest, SessionContext
from wrench.agent.events import TerminationReason, TurnEventType
from wrench.agent.orchestrator import ConversationOrchestrator
from wrench.cli.app import app
from wrench.cli.chat import ChatHandler
from wrench.config import _ENV_MAP
from wrench.llm.router import LLMRouter
from wrench.tools.policy import PolicyEngine
from wrench.tools.registry import ToolRegistry
from wrench.types import OperationClass

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for var in _ENV_MAP:
        monkeypatch.delenv(var, raising=False)


class TestCommands:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_tools_list(self):
        result = runner.invoke(app, ["tools", "list"])
        assert result.exit_code == 0
        for name in ("bash", "list_files", "search", "view_file"):
            assert name in result.output

    def test_tools_list_risk_filter(self):
        result = runner.invoke(app, ["tools", "list", "--max-risk", "read_only"])
        assert result.exit_code == 0
        assert "bash" not in result.output

    def test_tools_info_unknown(self):
        result = runner.invoke(app, ["tools", "info", "nope"])
        assert result.exit_code == 1
        assert "Tool not found" in result.output

    def test_config_validate_defaults(self):
        result = runner.invoke(app, ["config", "validate"])
        assert result.exit_code == 0
        assert "Config is valid" in result.output

    def test_config_validate_reports_problems(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("agent:\n  round_budget_policy: explode\n")
        result = runner.invoke(app, ["config", "validate", "--config", str(path)])
        assert result.exit_code == 1
        assert "round_budget_policy" in result.output

    def test_missing_config_file(self, tmp_path):
        result = runner.invoke(app, ["config", "show", "--config", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1
        assert "Config error" in result.output

    def test_bad_env_value_is_a_config_error(self, monkeypatch):
        monkeypatch.setenv("WRENCH_LLM_TEMPERATURE", "warm")
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 1
        assert "WRENCH_LLM_TEMPERATURE" in result.output


class ScriptedPrompt:
    """Stands in for a PromptSession; answers in order, then EOF."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.messages = []

    async def prompt_async(self, message=""):
        self.messages.append(message)
        if not self.answers:
            raise EOFError
        answer = self.answers.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        return answer


class StalledPrompt:
    """A prompt nobody answers; records whether it was withdrawn."""

    def __init__(self):
        self.started = asyncio.Event()
        self.withdrawn = False

    async def prompt_async(self, message=""):
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.withdrawn = True
            raise


class ExplodingShellTool(ShellTool):
    def describe_call(self, arguments):
        raise RuntimeError("cannot describe [shell]")


def _handler(scripts, *answers, prompt=None, tools=None):
    registry = ToolRegistry()
    for tool in tools or (EchoTool(), ShellTool()):
        registry.register(tool)
    router = LLMRouter()
    router.register_provider("mock", MockProvider(scripts=scripts))
    console = Console(file=io.StringIO(), width=120)
    handler = ChatHandler(console=console, prompt_session=prompt or ScriptedPrompt(*answers))
    handler.orchestrator = ConversationOrchestrator(
        router,
        registry,
        PolicyEngine(),
        session=SessionContext(),
        confirmation_gate=handler,
        token_counter=FakeTokenCounter(),
    )
    return handler


def _output(handler) -> str:
    return handler.console.file.getvalue()


def _shell_request():
    return ConfirmationRequest(operation=OperationClass.SHELL, tool_name="shell", description="$ ls")


class TestChatHandler:
    async def test_renders_answer(self):
        handler = _handler([text_fragments("Hello there.")])
        await handler.handle_input("hi")
        assert "Hello there." in _output(handler)

    async def test_renders_tool_round(self):
        handler = _handler(
            [tool_call_fragments("echo", {"message": "ping"}), text_fragments("All done.")]
        )
        await handler.handle_input("go")
        out = _output(handler)
        assert "echo" in out
        assert "All done." in out

    async def test_always_answer_suppresses_class(self):
        handler = _handler(
            [tool_call_fragments("shell", {"command": "ls"}), text_fragments("ok")],
            "a",
        )
        await handler.handle_input("list files")
        assert handler.orchestrator.session.is_suppressed(OperationClass.SHELL)

    async def test_decline(self):
        handler = _handler([text_fragments("")], "")
        result = await handler.request(_shell_request())
        assert not result.approved

    async def test_eof_declines(self):
        handler = _handler([text_fragments("")])
        result = await handler.request(_shell_request())
        assert not result.approved
        assert result.feedback == "No answer"

    async def test_terminal_session_answer(self):
        with create_pipe_input() as pipe:
            pipe.send_text("a\n")
            session = PromptSession(input=pipe, output=DummyOutput())
            handler = _handler([], prompt=session)
            result = await handler.request(_shell_request())
        assert result.approved
        assert result.suppress_future_for_class

    async def test_cancel_withdraws_pending_confirmation(self):
        prompt = StalledPrompt()
        handler = _handler(
            [tool_call_fragments("shell", {"command": "ls"}), text_fragments("unused")],
            prompt=prompt,
        )
        cancel = asyncio.Event()

        async def cancel_once_prompted():
            await prompt.started.wait()
            cancel.set()

        canceller = asyncio.create_task(cancel_once_prompted())
        events = [e async for e in handler.orchestrator.run("list files", cancel=cancel)]
        await canceller

        assert events[-1].type is TurnEventType.ERROR
        assert events[-1].reason is TerminationReason.CANCELLED
        assert prompt.withdrawn

    async def test_ctrl_c_at_confirmation_cancels_turn(self):
        handler = _handler(
            [tool_call_fragments("shell", {"command": "ls"}), text_fragments("unused")],
            KeyboardInterrupt(),
        )
        await handler.handle_input("list files")
        assert "Operation cancelled by user" in _output(handler)
        assert handler.orchestrator.state_machine.is_error()

    async def test_unexpected_error_keeps_session_alive(self):
        handler = _handler(
            [tool_call_fragments("shell", {"command": "ls"}), text_fragments("still here")],
            tools=[ExplodingShellTool()],
        )
        await handler.handle_input("list files")
        assert "Error:" in _output(handler)
        assert "cannot describe [shell]" in _output(handler)

        await handler.handle_input("again")
        assert "still here" in _output(handler)

    async def test_run_loop_reads_from_session(self):
        prompt = ScriptedPrompt("", "/flags", "/quit")
        handler = _handler([], prompt=prompt)
        await handler.run_loop()
        assert prompt.messages == ["you> ", "you> ", "you> "]
        assert "Goodbye" in _output(handler)

    async def test_commands(self):
        handler = _handler([text_fragments("x")])
        await handler.handle_input("remember me")
        assert len(handler.orchestrator.conversation) > 0

        assert await handler.handle_command("/clear")
        assert len(handler.orchestrator.conversation) == 0
        assert await handler.handle_command("/flags")
        assert await handler.handle_command("/tools")
        assert not await handler.handle_command("/unknown")
        assert await handler.handle_command("/quit")
        assert "Goodbye" in _output(handler)

    async def test_model_and_provider_commands(self):
        handler = _handler([text_fragments("x")])
        router = handler.orchestrator.router
        router.register_provider("backup", MockProvider(model_name="backup-model"))

        assert await handler.handle_command("/model")
        assert "mock-model" in _output(handler)
        assert await handler.handle_command("/model other-model")
        assert router.model == "other-model"

        assert await handler.handle_command("/provider")
        assert "* mock" in _output(handler)
        assert await handler.handle_command("/provider backup")
        assert router.active_name == "backup"
        assert router.model == "backup-model"
        assert await handler.handle_command("/provider nope")
        assert "Unknown provider" in _output(handler)
