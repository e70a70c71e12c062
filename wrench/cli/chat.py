"""Interactive chat session handler."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from prompt_toolkit import PromptSession
from rich.console import Console
from rich.markup import escape
from rich.status import Status

from wrench.agent.confirmation import ConfirmationRequest, ConfirmationResult
from wrench.agent.events import TurnEventType
from wrench.agent.orchestrator import ConversationOrchestrator
from wrench.cli.output import OutputFormatter
from wrench.errors import TurnCancelled
from wrench.llm.types import StreamProgress

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "  [bold]Commands:[/bold]\n"
    "  /quit     - Exit the chat\n"
    "  /tools    - List available tools\n"
    "  /clear    - Forget the conversation so far\n"
    "  /flags    - Show confirmation flags\n"
    "  /model    - Show the model, or /model NAME to switch\n"
    "  /provider - List providers, or /provider NAME to switch\n"
    "  /help     - Show this help\n"
    "\n"
    "  [dim]Ctrl-C while the assistant works cancels the current turn.[/dim]\n"
)


class ChatHandler:
    """
    Manages the interactive chat loop.

    Handles event rendering, inline commands, and tool confirmation prompts.
    The handler is also the orchestrator's ``ConfirmationGate``.
    """

    def __init__(
        self,
        orchestrator: ConversationOrchestrator | None = None,
        console: Console | None = None,
        prompt_session: PromptSession | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self._prompt = prompt_session
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self._running = True
        self._status: Status | None = None
        self._phase = "thinking"

    # ------------------------------------------------------------------
    # Terminal input
    # ------------------------------------------------------------------

    def _session(self) -> PromptSession:
        if self._prompt is None:
            self._prompt = PromptSession()
        return self._prompt

    async def read_line(self, message: str) -> str:
        """
        Read one line from the terminal.

        Every prompt goes through the handler's one ``PromptSession``, so
        cancelling the awaiting task withdraws the prompt and leaves nothing
        reading stdin behind it.
        """
        return (await self._session().prompt_async(message)).strip()

    # ------------------------------------------------------------------
    # ConfirmationGate
    # ------------------------------------------------------------------

    async def request(self, request: ConfirmationRequest) -> ConfirmationResult:
        """Prompt ``y / n / a`` for a side-effecting tool call."""
        self._stop_status()
        tool = self.orchestrator.registry.get(request.tool_name) if self.orchestrator else None
        risk = tool.risk_level.name if tool else "UNKNOWN"
        self.formatter.format_confirmation(request, risk)

        prompt = f"\n  Proceed? [y]es / [N]o / [a]lways for {request.operation.value}: "
        try:
            response = (await self.read_line(prompt)).lower()
        except EOFError:
            return ConfirmationResult(approved=False, feedback="No answer")
        except KeyboardInterrupt:
            # The prompt owns the terminal, so Ctrl-C arrives here, not as SIGINT.
            raise TurnCancelled() from None

        if response in ("a", "always"):
            return ConfirmationResult(approved=True, suppress_future_for_class=True)
        if response in ("y", "yes"):
            return ConfirmationResult(approved=True)
        return ConfirmationResult(approved=False)

    # ------------------------------------------------------------------
    # Inline commands
    # ------------------------------------------------------------------

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        name, _, arg = command.strip().partition(" ")
        arg = arg.strip()
        action = {
            "/quit": self._cmd_quit,
            "/tools": self._cmd_tools,
            "/clear": self._cmd_clear,
            "/flags": self._cmd_flags,
            "/model": lambda: self._cmd_model(arg),
            "/provider": lambda: self._cmd_provider(arg),
            "/help": self._cmd_help,
        }.get(name.lower())
        if action is None:
            return False
        action()
        return True

    def _cmd_quit(self) -> None:
        self._running = False
        self.console.print("[dim]Goodbye.[/dim]")

    def _cmd_tools(self) -> None:
        self.formatter.format_tool_list(self.orchestrator.registry.list())

    def _cmd_clear(self) -> None:
        self.orchestrator.conversation.clear()
        self.console.print("  [dim]Conversation cleared.[/dim]")

    def _cmd_flags(self) -> None:
        self.formatter.format_flags(self.orchestrator.session.flags())

    def _cmd_model(self, model: str) -> None:
        router = self.orchestrator.router
        if not model:
            self.console.print(f"  Model: [cyan]{router.model or '-'}[/cyan] via {router.active_name or '-'}")
            return
        try:
            router.set_model(model)
        except NotImplementedError as e:
            self.console.print(f"  [red]{escape(str(e))}[/red]")
            return
        self.console.print(f"  [dim]Model set to {escape(model)}.[/dim]")

    def _cmd_provider(self, name: str) -> None:
        router = self.orchestrator.router
        if not name:
            for provider in router.provider_names:
                marker = "*" if provider == router.active_name else " "
                self.console.print(f"  {marker} {provider}", highlight=False)
            return
        try:
            router.set_active(name)
        except KeyError:
            self.console.print(f"  [red]Unknown provider:[/red] {escape(name)}")
            return
        self.console.print(f"  [dim]Using provider {escape(name)} ({router.model or '-'}).[/dim]")

    def _cmd_help(self) -> None:
        self.console.print(HELP_TEXT)

    # ------------------------------------------------------------------
    # Turn rendering
    # ------------------------------------------------------------------

    def _start_status(self, text: str) -> None:
        if self._status is None:
            self._status = self.console.status(text, spinner="dots")
            self._status.start()
        else:
            self._status.update(text)

    def _stop_status(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    async def _watch_progress(self, queue: asyncio.Queue) -> None:
        while True:
            update: StreamProgress = await queue.get()
            if self._status is None:
                continue
            parts = [f"{self._phase}..."]
            if update.thinking_chars:
                parts.append(f"reasoning {update.thinking_chars} chars")
            if update.content_chars:
                parts.append(f"drafting {update.content_chars} chars")
            if update.tool_calls:
                parts.append(f"{update.tool_calls} tool call(s)")
            self._status.update("[dim]" + " | ".join(parts) + "[/dim]")

    async def handle_input(self, user_input: str) -> None:
        """Run one turn through the orchestrator and render its events."""
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        sigint_installed = False
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signal.SIGINT, cancel.set)
            sigint_installed = True

        watcher = None
        if self.orchestrator.progress is not None:
            watcher = asyncio.create_task(self._watch_progress(self.orchestrator.progress))

        streamed = False
        try:
            async for event in self.orchestrator.run(user_input, cancel=cancel):
                if event.type is TurnEventType.THINKING:
                    if event.content:
                        self._stop_status()
                        self.console.print(f"[dim italic]{event.content.strip()}[/dim italic]", highlight=False)
                    self._phase = "thinking"
                    self._start_status("[dim]thinking...[/dim]")
                elif event.type is TurnEventType.TOOL_CALLS:
                    self._stop_status()
                    self.formatter.format_tool_calls(event.tool_calls)
                    self._phase = "running tools"
                    self._start_status("[dim]running tools...[/dim]")
                elif event.type is TurnEventType.TOOL_RESULT:
                    self._stop_status()
                    self.formatter.format_tool_result(event.tool_call.name or "?", event.result)
                    self._start_status("[dim]running tools...[/dim]")
                elif event.type is TurnEventType.CONTENT:
                    if not streamed:
                        self._stop_status()
                        self.console.print("[dim]assistant>[/dim] ", end="")
                        streamed = True
                    self.console.print(event.content, end="", markup=False, highlight=False)
                elif event.type is TurnEventType.TOKEN_COUNT:
                    logger.debug("Context is ~%s tokens", event.token_count)
                elif event.type is TurnEventType.DONE:
                    self._stop_status()
                    if streamed:
                        self.console.print()
                elif event.type is TurnEventType.ERROR:
                    self._stop_status()
                    self.formatter.format_error(event)
        except Exception as e:
            logger.debug("Turn failed unexpectedly", exc_info=True)
            self._stop_status()
            self.console.print(f"\n[red]Error:[/red] {escape(str(e))}", highlight=False)
        finally:
            self._stop_status()
            if watcher is not None:
                watcher.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await watcher
            if sigint_installed:
                loop.remove_signal_handler(signal.SIGINT)

    async def run_loop(self) -> None:
        """Main interactive loop."""
        self.console.print(
            "[bold]wrench[/bold] - terminal coding assistant\n"
            "[dim]Type /help for commands, /quit to exit.[/dim]\n"
        )

        while self._running:
            try:
                user_input = await self.read_line("you> ")
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                handled = await self.handle_command(user_input)
                if handled:
                    continue

            await self.handle_input(user_input)
