"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags < per-session overrides
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Iterator

import yaml


DEFAULT_CONFIG_PATHS = (
    Path("wrench.yaml"),
    Path("wrench.yml"),
    Path("~/.config/wrench/config.yaml"),
    Path("~/.wrench/config.yaml"),
)

_RISK_NAMES = ("READ_ONLY", "WRITE", "DESTRUCTIVE", "SHELL")
_BUDGET_POLICIES = ("error", "final_response")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """The config file could not be read or parsed."""


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMProviderConfig:
    name: str = "openai"
    model: str = "gpt-4o"
    api_base: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    max_context_tokens: int = 128_000
    max_output_tokens: int = 4_096
    temperature: float = 0.0
    timeout_seconds: int = 120
    max_retries: int = 2


@dataclass
class AgentConfig:
    max_rounds: int = 400
    round_budget_policy: str = "error"
    tool_timeout_seconds: int = 120
    progress_queue_size: int = 64
    confirmation_timeout_seconds: int = 0


@dataclass
class ConfirmationConfig:
    max_risk: str = "SHELL"
    confirm_file_edits: bool = True
    confirm_shell: bool = True
    blocked_patterns: list[str] = field(default_factory=list)


@dataclass
class ToolsConfig:
    disabled: list[str] = field(default_factory=list)
    shell_timeout_seconds: int = 30
    max_output_bytes: int = 100 * 1024


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = ""
    max_size_mb: int = 10
    keep_files: int = 3


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class WrenchConfig:
    llm: LLMProviderConfig = field(default_factory=LLMProviderConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)
    source: str | None = None

    # ----- per-session overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'llm.model')."""
        _apply_dotpath(self, dotpath, value)
        self._overrides[dotpath] = value

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        d.pop("source", None)
        return d


_SECTION_TYPES: dict[str, type] = {
    "llm": LLMProviderConfig,
    "agent": AgentConfig,
    "confirmation": ConfirmationConfig,
    "tools": ToolsConfig,
    "logging": LoggingConfig,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(cfg: Any, dotpath: str, value: Any) -> None:
    """Set ``section.key`` on *cfg*; unknown keys raise ``KeyError``."""
    *parents, key = dotpath.split(".")
    target = cfg
    for name in parents:
        target = getattr(target, name, None)
        if target is None:
            raise KeyError(f"Unknown config key: {dotpath}")
    if not hasattr(target, key):
        raise KeyError(f"Unknown config key: {dotpath}")
    setattr(target, key, value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Return *base* updated with *overlay*, merging nested mappings key by key."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


def _parse_bool(text: str) -> bool:
    return text.strip().lower() in ("1", "true", "yes", "on")


def _parse_list(text: str) -> list[str]:
    return [item.strip() for item in text.split(",") if item.strip()]


_ENV_PARSERS: dict[type, Any] = {bool: _parse_bool, int: int, float: float, list: _parse_list}


def _build_section(cls: type, raw: dict | None) -> Any:
    """Instantiate section *cls* from the keys of *raw* it knows about."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (raw or {}).items() if k in known})


def find_config_file() -> Path | None:
    """Return the first existing file in ``DEFAULT_CONFIG_PATHS``."""
    candidates = (p.expanduser() for p in DEFAULT_CONFIG_PATHS)
    return next((p for p in candidates if p.is_file()), None)


def _read_config_file(source: Path) -> dict[str, Any]:
    try:
        with source.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {source}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {source} must be a mapping")
    return data


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "WRENCH_LLM_NAME":                ("llm.name", str),
    "WRENCH_LLM_MODEL":               ("llm.model", str),
    "WRENCH_LLM_API_BASE":            ("llm.api_base", str),
    "WRENCH_LLM_API_KEY_ENV":         ("llm.api_key_env", str),
    "WRENCH_LLM_MAX_CONTEXT":         ("llm.max_context_tokens", int),
    "WRENCH_LLM_MAX_OUTPUT":          ("llm.max_output_tokens", int),
    "WRENCH_LLM_TEMPERATURE":         ("llm.temperature", float),
    "WRENCH_LLM_TIMEOUT":             ("llm.timeout_seconds", int),
    "WRENCH_LLM_MAX_RETRIES":         ("llm.max_retries", int),
    "WRENCH_AGENT_MAX_ROUNDS":        ("agent.max_rounds", int),
    "WRENCH_AGENT_BUDGET_POLICY":     ("agent.round_budget_policy", str),
    "WRENCH_AGENT_TOOL_TIMEOUT":      ("agent.tool_timeout_seconds", int),
    "WRENCH_AGENT_CONFIRM_TIMEOUT":   ("agent.confirmation_timeout_seconds", int),
    "WRENCH_CONFIRM_MAX_RISK":        ("confirmation.max_risk", str),
    "WRENCH_CONFIRM_FILE_EDITS":      ("confirmation.confirm_file_edits", bool),
    "WRENCH_CONFIRM_SHELL":           ("confirmation.confirm_shell", bool),
    "WRENCH_CONFIRM_BLOCKED":         ("confirmation.blocked_patterns", list),
    "WRENCH_TOOLS_DISABLED":          ("tools.disabled", list),
    "WRENCH_TOOLS_SHELL_TIMEOUT":     ("tools.shell_timeout_seconds", int),
    "WRENCH_TOOLS_MAX_OUTPUT":        ("tools.max_output_bytes", int),
    "WRENCH_LOG_LEVEL":               ("logging.level", str),
    "WRENCH_LOG_FILE":                ("logging.file", str),
}


def _env_overrides() -> Iterator[tuple[str, Any]]:
    for env_var, (dotpath, kind) in _ENV_MAP.items():
        text = os.environ.get(env_var)
        if text is None:
            continue
        try:
            value = _ENV_PARSERS.get(kind, str)(text)
        except ValueError as e:
            raise ConfigError(f"{env_var}: expected {kind.__name__}, got {text!r}") from e
        yield dotpath, value


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
    discover: bool = True,
) -> WrenchConfig:
    """
    Build a WrenchConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides; ``None``
        values are skipped so unset flags do not mask lower layers
    discover : search ``DEFAULT_CONFIG_PATHS`` when no path is given

    Raises ``ConfigError`` if the file is not valid YAML or not a mapping,
    or if *profile* names a profile the file does not define.
    """
    if config_path is not None:
        source = Path(config_path).expanduser()
        if not source.is_file():
            raise ConfigError(f"Config file not found: {source}")
    else:
        source = find_config_file() if discover else None

    raw = _read_config_file(source) if source is not None else {}
    profiles = raw.get("profiles") or {}
    if profile:
        if profile not in profiles:
            raise ConfigError(f"Unknown profile: {profile}")
        raw = _deep_merge(raw, profiles[profile] or {})

    cfg = WrenchConfig(
        **{name: _build_section(cls, raw.get(name)) for name, cls in _SECTION_TYPES.items()},
        profiles=profiles,
        source=str(source) if source is not None else None,
    )

    later_layers = list(_env_overrides())
    later_layers += [(k, v) for k, v in (cli_overrides or {}).items() if v is not None]
    for dotpath, value in later_layers:
        _apply_dotpath(cfg, dotpath, value)
    return cfg


def validate_config(cfg: WrenchConfig) -> list[str]:
    """Return a list of problems; empty means the config is usable."""
    problems: list[str] = []

    if cfg.agent.max_rounds < 1:
        problems.append("agent.max_rounds must be >= 1")
    if cfg.agent.round_budget_policy not in _BUDGET_POLICIES:
        problems.append(
            f"agent.round_budget_policy must be one of {', '.join(_BUDGET_POLICIES)}"
        )
    if cfg.agent.tool_timeout_seconds < 0:
        problems.append("agent.tool_timeout_seconds must be >= 0")
    if cfg.agent.progress_queue_size < 1:
        problems.append("agent.progress_queue_size must be >= 1")
    if cfg.agent.confirmation_timeout_seconds < 0:
        problems.append("agent.confirmation_timeout_seconds must be >= 0")

    if cfg.confirmation.max_risk.upper() not in _RISK_NAMES:
        problems.append(f"confirmation.max_risk must be one of {', '.join(_RISK_NAMES)}")
    for pattern in cfg.confirmation.blocked_patterns:
        try:
            re.compile(pattern)
        except re.error as e:
            problems.append(f"confirmation.blocked_patterns: {pattern!r} ({e})")

    if cfg.tools.shell_timeout_seconds <= 0:
        problems.append("tools.shell_timeout_seconds must be > 0")
    if cfg.tools.max_output_bytes <= 0:
        problems.append("tools.max_output_bytes must be > 0")

    if not cfg.llm.model:
        problems.append("llm.model is required")
    if not cfg.llm.api_base:
        problems.append("llm.api_base is required")
    if cfg.llm.max_retries < 0:
        problems.append("llm.max_retries must be >= 0")

    if cfg.logging.level.upper() not in _LOG_LEVELS:
        problems.append(f"logging.level must be one of {', '.join(_LOG_LEVELS)}")

    return problems
