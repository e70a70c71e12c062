"""
Main CLI application for wrench.

Usage:
    wr chat [--model NAME] [--profile NAME] [--max-rounds N] [--yes] [--verbose]
    wr tools list|info
    wr config show|validate
    wr version
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from wrench import __version__
from wrench.config import ConfigError, WrenchConfig, load_config, validate_config
from wrench.logs import setup_logging
from wrench.tools.base import ToolRisk
from wrench.tools.builtin import register_builtin_tools
from wrench.tools.policy import PolicyEngine
from wrench.tools.registry import ToolRegistry

app = typer.Typer(name="wr", help="wrench - terminal coding assistant")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load(config: Path | None, profile: str | None = None, **overrides) -> WrenchConfig:
    try:
        return load_config(config, profile=profile, cli_overrides=overrides)
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)


def build_registry(cfg: WrenchConfig, root: str | Path | None = None) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(
        registry,
        root=root,
        shell_timeout=float(cfg.tools.shell_timeout_seconds),
        max_output_bytes=cfg.tools.max_output_bytes,
        disabled=cfg.tools.disabled,
    )
    return registry


def _parse_risk(name: str) -> ToolRisk | None:
    return ToolRisk.__members__.get(name.strip().upper())


def build_policy(cfg: WrenchConfig) -> PolicyEngine:
    return PolicyEngine(
        max_risk=_parse_risk(cfg.confirmation.max_risk) or ToolRisk.SHELL,
        confirm_file_edits=cfg.confirmation.confirm_file_edits,
        confirm_shell=cfg.confirmation.confirm_shell,
        blocked_patterns=cfg.confirmation.blocked_patterns,
    )


def _setup_stack(cfg: WrenchConfig, *, auto_approve: bool = False):
    """Wire up the full stack for chat."""
    from wrench.agent.confirmation import AutoApproveGate, SessionContext
    from wrench.agent.orchestrator import ConversationOrchestrator, RoundBudgetPolicy
    from wrench.cli.chat import ChatHandler
    from wrench.llm.providers.openai_compat import OpenAICompatProvider
    from wrench.llm.router import LLMRouter
    from wrench.llm.token_counter import TokenCounter
    from wrench.prompts.system import build_system_prompt

    registry = build_registry(cfg)
    policy = build_policy(cfg)

    router = LLMRouter()
    api_key = os.environ.get(cfg.llm.api_key_env, "")
    if not api_key:
        console.print(
            f"[yellow]Warning:[/yellow] ${cfg.llm.api_key_env} is not set; "
            "requests are sent without an API key."
        )
    router.register_provider(
        cfg.llm.name,
        OpenAICompatProvider(
            url=cfg.llm.api_base,
            model=cfg.llm.model,
            api_key=api_key,
            timeout=float(cfg.llm.timeout_seconds),
            max_retries=cfg.llm.max_retries,
            max_context=cfg.llm.max_context_tokens,
            max_output=cfg.llm.max_output_tokens,
            temperature=cfg.llm.temperature,
        ),
    )

    chat_handler = ChatHandler(console=console)
    gate = AutoApproveGate() if auto_approve else chat_handler

    orchestrator = ConversationOrchestrator(
        router,
        registry,
        policy,
        session=SessionContext(),
        confirmation_gate=gate,
        token_counter=TokenCounter(cfg.llm.model),
        system_prompt=build_system_prompt(tools=registry.list()),
        tool_timeout=float(cfg.agent.tool_timeout_seconds),
        max_rounds=cfg.agent.max_rounds,
        budget_policy=RoundBudgetPolicy(cfg.agent.round_budget_policy),
        confirmation_timeout=float(cfg.agent.confirmation_timeout_seconds) or None,
        progress=asyncio.Queue(maxsize=cfg.agent.progress_queue_size),
        request_timeout=float(cfg.llm.timeout_seconds),
    )
    chat_handler.orchestrator = orchestrator
    return chat_handler


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    model: Optional[str] = typer.Option(None, help="Model name"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    max_rounds: Optional[int] = typer.Option(None, "--max-rounds", min=1, help="Tool rounds per turn"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Approve every tool call without asking"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Start an interactive chat session."""
    cfg = _load(config, profile, **{"llm.model": model, "agent.max_rounds": max_rounds})
    problems = validate_config(cfg)
    if problems:
        for p in problems:
            console.print(f"[red]Config error:[/red] {p}")
        raise typer.Exit(1)

    setup_logging(
        cfg.logging.level,
        verbose=verbose,
        file=cfg.logging.file or None,
        max_size_mb=cfg.logging.max_size_mb,
        keep_files=cfg.logging.keep_files,
    )
    logger.info("Using %s (%s), config %s", cfg.llm.name, cfg.llm.model, cfg.source or "defaults")

    async def _run():
        handler = _setup_stack(cfg, auto_approve=yes)
        await handler.run_loop()

    asyncio.run(_run())


@tools_app.command("list")
def tools_list(
    max_risk: Optional[str] = typer.Option(None, help="Max risk level filter"),
):
    """List registered tools."""
    from wrench.cli.output import OutputFormatter

    registry = build_registry(_load(None))

    risk_filter = None
    if max_risk:
        risk_filter = _parse_risk(max_risk)
        if risk_filter is None:
            console.print(f"[red]Unknown risk level:[/red] {max_risk}")
            raise typer.Exit(1)

    OutputFormatter(console).format_tool_list(registry.list(max_risk=risk_filter))


@tools_app.command("info")
def tools_info(tool_name: str = typer.Argument(..., help="Tool name")):
    """Show tool details and schema."""
    from wrench.cli.output import OutputFormatter

    registry = build_registry(_load(None))
    tool = registry.get(tool_name)
    if not tool:
        console.print(f"[red]Tool not found:[/red] {tool_name}")
        raise typer.Exit(1)

    OutputFormatter(console).format_tool_info(tool)


@config_app.command("show")
def config_show(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Show effective config."""
    from wrench.cli.output import OutputFormatter

    cfg = _load(config, profile)
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Validate config and report any problems."""
    cfg = _load(config, profile)
    problems = validate_config(cfg)
    if problems:
        console.print("[red]Config validation failed:[/red]")
        for p in problems:
            console.print(f"  - {p}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if cfg.source:
        console.print(f"  Loaded from: {cfg.source}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  LLM provider: {cfg.llm.name} ({cfg.llm.model})")
    console.print(f"  Max rounds: {cfg.agent.max_rounds} ({cfg.agent.round_budget_policy})")
    console.print(f"  Max risk: {cfg.confirmation.max_risk}")


@app.command()
def version():
    """Show version."""
    console.print(f"wrench v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
