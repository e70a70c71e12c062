"""System prompt builder."""

from __future__ import annotations

import os
import platform

from wrench.tools.base import Tool

ROLE = (
    "You are a coding assistant working in the user's terminal with direct access "
    "to their project through tools. You can list and read files, search the code, "
    "and run shell commands. When the user asks you to look at or do something in "
    "the project, use your tools to do it instead of asking the user to."
)

SAFETY_SECTION = """## Safety

- Never expose credentials, secrets, or sensitive data in your responses.
- Shell commands may need the user's approval. If a call is declined, do not retry it unchanged.
- If a tool call is blocked by policy, explain why and suggest alternatives."""

TOOL_DISCIPLINE_SECTION = """## Tool Discipline

- Read before you change: inspect files with `view_file` and `search` first.
- Paths are relative to the workspace root.
- Only pass arguments that match the tool's parameter schema.
- Each response either calls tools or answers the user, not both.
- If a tool returns an error, report it clearly and do not silently repeat the same call."""


def _tools_section(tools: list[Tool]) -> str:
    lines = [f"- **{t.name}** [{t.risk_level.name}]: {t.description}" for t in tools]
    return "## Available Tools\n\n" + "\n".join(lines)


def _environment_section(workspace: str | None) -> str:
    return (
        "## Environment\n\n"
        f"- Workspace: `{workspace or os.getcwd()}`\n"
        f"- Platform: {platform.system()} {platform.release()}"
    )


def build_system_prompt(
    tools: list[Tool] | None = None,
    workspace: str | None = None,
    extra_sections: list[str] | None = None,
) -> str:
    """
    Build the system prompt for the orchestrator.

    The role statement and the safety and tool rules come first, followed by
    the tools the model may call and a short description of where it runs.
    """
    sections = [ROLE, SAFETY_SECTION, TOOL_DISCIPLINE_SECTION]
    if tools:
        sections.append(_tools_section(tools))
    sections.append(_environment_section(workspace))
    sections.extend(extra_sections or ())
    return "\n\n".join(sections)
