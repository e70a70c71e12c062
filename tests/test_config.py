"""Tests for the layered config loader."""

import pytest
import yaml

from wrench.config import (
    _ENV_MAP,
    ConfigError,
    WrenchConfig,
    load_config,
    validate_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in _ENV_MAP:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "wrench.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "llm": {"model": "file-model", "temperature": 0.5},
                "agent": {"max_rounds": 10},
                "profiles": {
                    "local": {
                        "llm": {"model": "qwen", "api_base": "http://localhost:8000/v1"},
                    },
                },
            }
        )
    )
    return path


class TestDefaults:
    def test_defaults_without_file(self):
        cfg = load_config(discover=False)
        assert cfg.llm.model == "gpt-4o"
        assert cfg.agent.max_rounds == 400
        assert cfg.agent.round_budget_policy == "error"
        assert cfg.confirmation.confirm_shell is True
        assert cfg.source is None

    def test_defaults_are_valid(self):
        assert validate_config(WrenchConfig()) == []


class TestLayering:
    def test_file_overrides_defaults(self, config_file):
        cfg = load_config(config_file)
        assert cfg.llm.model == "file-model"
        assert cfg.llm.temperature == 0.5
        assert cfg.agent.max_rounds == 10
        assert cfg.llm.max_retries == 2
        assert cfg.source == str(config_file)

    def test_profile_overrides_file(self, config_file):
        cfg = load_config(config_file, profile="local")
        assert cfg.llm.model == "qwen"
        assert cfg.llm.api_base == "http://localhost:8000/v1"
        assert cfg.llm.temperature == 0.5

    def test_env_overrides_profile(self, config_file, monkeypatch):
        monkeypatch.setenv("WRENCH_LLM_MODEL", "env-model")
        monkeypatch.setenv("WRENCH_CONFIRM_SHELL", "false")
        monkeypatch.setenv("WRENCH_TOOLS_DISABLED", "bash, search")
        cfg = load_config(config_file, profile="local")
        assert cfg.llm.model == "env-model"
        assert cfg.confirmation.confirm_shell is False
        assert cfg.tools.disabled == ["bash", "search"]

    def test_cli_overrides_env(self, config_file, monkeypatch):
        monkeypatch.setenv("WRENCH_AGENT_MAX_ROUNDS", "7")
        cfg = load_config(config_file, cli_overrides={"agent.max_rounds": 3, "llm.model": None})
        assert cfg.agent.max_rounds == 3
        assert cfg.llm.model == "file-model"

    def test_unknown_file_keys_ignored(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("llm:\n  model: m\n  colour: blue\n")
        assert load_config(path).llm.model == "m"

    def test_session_override(self):
        cfg = load_config(discover=False)
        cfg.set_override("agent.max_rounds", 5)
        assert cfg.agent.max_rounds == 5
        assert cfg.get_override("agent.max_rounds") == 5
        assert "_overrides" not in cfg.to_dict()

    def test_unknown_override_key(self):
        cfg = load_config(discover=False)
        with pytest.raises(KeyError):
            cfg.set_override("llm.nope", 1)


class TestErrors:
    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("llm: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_unknown_profile(self, config_file):
        with pytest.raises(ConfigError, match="Unknown profile"):
            load_config(config_file, profile="prod")

    def test_unparsable_env_value(self, monkeypatch):
        monkeypatch.setenv("WRENCH_AGENT_MAX_ROUNDS", "abc")
        with pytest.raises(ConfigError, match="WRENCH_AGENT_MAX_ROUNDS: expected int"):
            load_config(discover=False)


class TestValidate:
    def test_reports_each_problem(self):
        cfg = WrenchConfig()
        cfg.agent.max_rounds = 0
        cfg.agent.round_budget_policy = "explode"
        cfg.confirmation.max_risk = "NUCLEAR"
        cfg.confirmation.blocked_patterns = ["(unclosed"]
        cfg.logging.level = "LOUD"
        problems = validate_config(cfg)
        assert len(problems) == 5
        assert any("max_rounds" in p for p in problems)
        assert any("round_budget_policy" in p for p in problems)
        assert any("max_risk" in p for p in problems)
        assert any("blocked_patterns" in p for p in problems)
        assert any("logging.level" in p for p in problems)

    def test_risk_name_case_insensitive(self):
        cfg = WrenchConfig()
        cfg.confirmation.max_risk = "write"
        assert validate_config(cfg) == []
