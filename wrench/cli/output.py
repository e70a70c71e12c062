"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from wrench.agent.confirmation import ConfirmationRequest
from wrench.agent.events import TurnEvent
from wrench.llm.types import ToolCall
from wrench.tools.base import Tool, ToolRisk
from wrench.types import ToolResult

RISK_COLORS = {
    ToolRisk.READ_ONLY: "green",
    ToolRisk.WRITE: "yellow",
    ToolRisk.DESTRUCTIVE: "red",
    ToolRisk.SHELL: "bold red",
}

_RESULT_PREVIEW = 200


class OutputFormatter:
    """Rich-based output formatting for the wrench CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _risk_text(self, tool: Tool) -> Text:
        return Text(tool.risk_level.name, style=RISK_COLORS.get(tool.risk_level, "white"))

    def format_tool_list(self, tools: list[Tool]) -> None:
        table = Table(title=f"Tools ({len(tools)})", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Risk", no_wrap=True)
        table.add_column("Confirms", no_wrap=True)
        table.add_column("Description")
        for tool in tools:
            scope = tool.operation_class
            table.add_row(tool.name, self._risk_text(tool), scope.value if scope else "-", tool.description)
        self.console.print(table)

    def format_tool_info(self, tool: Tool) -> None:
        details = Table.grid(padding=(0, 2))
        details.add_column(style="dim")
        details.add_column()
        details.add_row("Risk", self._risk_text(tool))
        scope = tool.operation_class
        details.add_row("Confirmation scope", scope.value if scope else "none")
        details.add_row("Description", tool.description)
        self.console.print(Panel(details, title=f"Tool: {tool.name}", expand=False))
        schema_json = json.dumps(tool.parameters, indent=2)
        self.console.print(Syntax(schema_json, "json", theme="monokai"))

    # ------------------------------------------------------------------
    # Turn events
    # ------------------------------------------------------------------

    def format_tool_calls(self, calls: tuple[ToolCall, ...]) -> None:
        for call in calls:
            if call.ok:
                args = json.dumps(call.arguments, default=str)
                if len(args) > 120:
                    args = args[:117] + "..."
                self.console.print(f"  [yellow]>[/yellow] [bold]{call.name}[/bold] {args}", highlight=False)
            else:
                self.console.print(
                    f"  [yellow]>[/yellow] [bold]{call.name or '?'}[/bold] [red](unparseable arguments)[/red]"
                )

    def format_tool_result(self, tool_name: str, result: ToolResult) -> None:
        preview = result.content.strip().replace("\n", " ")
        if len(preview) > _RESULT_PREVIEW:
            preview = preview[: _RESULT_PREVIEW - 3] + "..."
        if result.success:
            status = "[green]OK[/green]"
        else:
            status = f"[red]FAILED[/red] [dim]({result.error_code})[/dim]"
        line = Text.from_markup(f"  [{tool_name}] {status}: ")
        line.append(preview)
        self.console.print(line)

    def format_error(self, event: TurnEvent) -> None:
        reason = event.reason.value if event.reason else "error"
        if reason == "cancelled":
            self.console.print(f"\n[yellow]{event.content}[/yellow]")
            return
        self.console.print(f"\n[red]Error ({reason}):[/red] {event.content}", highlight=False)

    def format_confirmation(self, request: ConfirmationRequest, risk_level: str) -> None:
        args_str = json.dumps(request.arguments, indent=2, default=str)
        parts = [
            "[bold yellow]Tool call requires confirmation[/bold yellow]\n",
            f"  [bold]Tool:[/bold]  {request.tool_name}",
            f"  [bold]Risk:[/bold]  {risk_level}",
            f"  [bold]Class:[/bold] {request.operation.value}",
            f"  [bold]Call:[/bold]  {request.description}",
            "  [bold]Args:[/bold]",
        ]
        self.console.print("\n".join(parts), highlight=False)
        self.console.print(Syntax(args_str, "json", theme="monokai"))

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    def format_flags(self, flags: dict[str, bool]) -> None:
        table = Table(title="Confirmation flags")
        table.add_column("Class", style="cyan")
        table.add_column("Don't ask again")
        for name, value in flags.items():
            table.add_row(name, "[green]yes[/green]" if value else "no")
        self.console.print(table)

    def format_config(self, config: dict[str, Any]) -> None:
        text = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(text, "json", theme="monokai"))
