"""
Built-in tools.

- list_files
- view_file
- search
- bash

Every path argument is resolved against the workspace root and must stay
inside it.
"""

from __future__ import annotations

import asyncio
import fnmatch
import os
import re
import time
from pathlib import Path

from wrench.errors import ToolExecutionError
from wrench.tools.base import Tool, ToolRisk
from wrench.tools.registry import ToolRegistry
from wrench.types import ToolResult

# Cap output per stream to prevent memory issues.
DEFAULT_MAX_OUTPUT_BYTES = 100 * 1024  # 100 KB

_SKIP_DIRS = frozenset({".git", ".hg", ".svn", "__pycache__", "node_modules", ".venv", "venv"})


class WorkspaceTool(Tool):
    """Base for tools that operate on files below a root directory."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or os.getcwd()).resolve()

    def resolve(self, path: str | None) -> Path:
        candidate = (self.root / (path or ".")).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ToolExecutionError(
                self.name,
                f"Path is outside the workspace: {path}",
                code="path_outside_workspace",
            )
        return candidate

    def relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root)) or "."
        except ValueError:
            return str(path)


def _walk(base: Path):
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        for fn in sorted(filenames):
            yield Path(dirpath) / fn


class ListFilesTool(WorkspaceTool):
    """List directory entries, optionally recursively."""

    @property
    def name(self) -> str:
        return "list_files"

    @property
    def description(self) -> str:
        return "List files and directories under a path in the workspace."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory relative to the workspace root. Defaults to the root.",
                },
                "recursive": {
                    "type": "boolean",
                    "description": "Walk subdirectories as well.",
                },
                "max_entries": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Stop after this many entries (default 500).",
                },
            },
        }

    async def execute(self, **kwargs) -> ToolResult:
        base = self.resolve(kwargs.get("path"))
        limit = kwargs.get("max_entries", 500)
        if not base.is_dir():
            raise ToolExecutionError(
                self.name, f"Not a directory: {kwargs.get('path') or '.'}", code="not_found"
            )

        if kwargs.get("recursive"):
            paths = _walk(base)
        else:
            paths = iter(sorted(base.iterdir()))

        entries: list[str] = []
        truncated = False
        for p in paths:
            if len(entries) >= limit:
                truncated = True
                break
            rel = self.relative(p)
            entries.append(rel + "/" if p.is_dir() else rel)

        content = "\n".join(entries) if entries else "(empty)"
        if truncated:
            content += f"\n... truncated after {limit} entries"
        return ToolResult(
            success=True,
            content=content,
            data=entries,
            metadata={"truncated": truncated},
        )


class ViewFileTool(WorkspaceTool):
    """Read a text file, optionally a line range."""

    def __init__(
        self, root: str | Path | None = None, max_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    ) -> None:
        super().__init__(root)
        self.max_bytes = max_bytes

    @property
    def name(self) -> str:
        return "view_file"

    @property
    def description(self) -> str:
        return "Show the contents of a text file with line numbers."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File relative to the workspace root."},
                "start_line": {"type": "integer", "minimum": 1},
                "end_line": {"type": "integer", "minimum": 1},
            },
            "required": ["path"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        path = self.resolve(kwargs["path"])
        if not path.is_file():
            raise ToolExecutionError(
                self.name, f"File not found: {kwargs['path']}", code="not_found"
            )

        raw = path.read_bytes()
        truncated = len(raw) > self.max_bytes
        text = raw[: self.max_bytes].decode("utf-8", errors="replace")
        lines = text.splitlines()

        start = kwargs.get("start_line", 1)
        end = kwargs.get("end_line", len(lines))
        if end < start:
            raise ToolExecutionError(
                self.name, f"end_line ({end}) is before start_line ({start})",
                code="invalid_range",
            )

        numbered = [f"{i:>6}  {line}" for i, line in enumerate(lines[start - 1 : end], start)]
        content = "\n".join(numbered)
        if truncated:
            content += f"\n... file truncated at {self.max_bytes} bytes"
        return ToolResult(
            success=True,
            content=content,
            metadata={"path": self.relative(path), "lines": len(lines), "truncated": truncated},
        )


class SearchTool(WorkspaceTool):
    """Regex search over files in the workspace."""

    @property
    def name(self) -> str:
        return "search"

    @property
    def description(self) -> str:
        return "Search files in the workspace for a regular expression. Returns path:line: text matches."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Python regular expression."},
                "path": {"type": "string", "description": "Directory or file to search."},
                "glob": {"type": "string", "description": "Only search files matching this glob, e.g. '*.py'."},
                "ignore_case": {"type": "boolean"},
                "max_results": {"type": "integer", "minimum": 1},
            },
            "required": ["pattern"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        flags = re.IGNORECASE if kwargs.get("ignore_case") else 0
        try:
            rx = re.compile(kwargs["pattern"], flags)
        except re.error as e:
            raise ToolExecutionError(
                self.name, f"Invalid regular expression: {e}", code="invalid_pattern"
            ) from e

        base = self.resolve(kwargs.get("path"))
        glob = kwargs.get("glob")
        limit = kwargs.get("max_results", 200)
        files = [base] if base.is_file() else _walk(base)

        matches: list[dict] = []
        for f in files:
            if glob and not fnmatch.fnmatch(f.name, glob):
                continue
            try:
                with f.open("r", encoding="utf-8") as fh:
                    for lineno, line in enumerate(fh, 1):
                        if rx.search(line):
                            matches.append(
                                {"path": self.relative(f), "line": lineno, "text": line.rstrip("\n")}
                            )
                            if len(matches) >= limit:
                                break
            except (UnicodeDecodeError, OSError):
                continue
            if len(matches) >= limit:
                break
            # Large trees: let the cancel signal in.
            await asyncio.sleep(0)

        if not matches:
            return ToolResult(success=True, content="No matches.", data=[])
        lines = [f"{m['path']}:{m['line']}: {m['text']}" for m in matches]
        return ToolResult(
            success=True,
            content="\n".join(lines),
            data=matches,
            metadata={"truncated": len(matches) >= limit},
        )


class BashTool(WorkspaceTool):
    """Run a shell command in the workspace root."""

    def __init__(
        self,
        root: str | Path | None = None,
        timeout: float = 30.0,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> None:
        super().__init__(root)
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes

    @property
    def name(self) -> str:
        return "bash"

    @property
    def description(self) -> str:
        return "Execute a shell command in the workspace directory and return its output."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to run."},
                "timeout": {
                    "type": "number",
                    "exclusiveMinimum": 0,
                    "description": "Seconds before the command is killed.",
                },
            },
            "required": ["command"],
        }

    @property
    def risk_level(self) -> ToolRisk:
        return ToolRisk.SHELL

    def describe_call(self, arguments: dict) -> str:
        return f"$ {arguments.get('command', '')}"

    async def execute(self, **kwargs) -> ToolResult:
        command = kwargs["command"]
        timeout = kwargs.get("timeout", self.timeout)

        t0 = time.monotonic()
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(self.root),
        )
        try:
            stdout_raw, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _terminate(proc)
            raise ToolExecutionError(
                self.name,
                f"Command timed out after {timeout}s",
                code="timeout",
                context={"command": command},
            )
        except asyncio.CancelledError:
            await _terminate(proc)
            raise

        duration_ms = round((time.monotonic() - t0) * 1000)
        cap = self.max_output_bytes
        stdout = stdout_raw[:cap].decode("utf-8", errors="replace")
        stderr = stderr_raw[:cap].decode("utf-8", errors="replace")

        truncated = {}
        if len(stdout_raw) > cap:
            truncated["stdout"] = True
        if len(stderr_raw) > cap:
            truncated["stderr"] = True

        parts = []
        if stdout:
            parts.append(stdout.rstrip("\n"))
        if stderr:
            parts.append("[stderr]\n" + stderr.rstrip("\n"))
        parts.append(f"[exit code {proc.returncode}]")

        data: dict = {
            "exit_code": proc.returncode,
            "stdout": stdout,
            "stderr": stderr,
            "duration_ms": duration_ms,
        }
        if truncated:
            data["truncated"] = truncated
        return ToolResult(
            success=proc.returncode == 0,
            content="\n".join(parts),
            data=data,
            error=None if proc.returncode == 0 else f"exit code {proc.returncode}",
            error_code=None if proc.returncode == 0 else "nonzero_exit",
        )


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
        await asyncio.wait_for(proc.wait(), timeout=5)
    except (ProcessLookupError, asyncio.TimeoutError):
        pass


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    root: str | Path | None = None,
    shell_timeout: float = 30.0,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    disabled: list[str] | None = None,
) -> ToolRegistry:
    """Register every built-in tool not named in *disabled*."""
    skip = set(disabled or [])
    tools: list[Tool] = [
        ListFilesTool(root),
        ViewFileTool(root, max_bytes=max_output_bytes),
        SearchTool(root),
        BashTool(root, timeout=shell_timeout, max_output_bytes=max_output_bytes),
    ]
    for tool in tools:
        if tool.name not in skip:
            registry.register(tool)
    return registry
