"""Tests for ralph.lib.config module."""

import pytest
from pathlib import Path

from ralph.lib.config import (
    ENV_VARS,
    ConfigError,
    RalphConfig,
    load_config,
    load_dotenv,
    validate_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS.values():
        monkeypatch.delenv(var, raising=False)


class TestLoadDotenv:
    """Tests for the .env parser."""

    def test_basic_and_quoted(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text('# comment\nA=1\nexport B="two words"\nC=\'x;y\'\n')
        assert load_dotenv(path) == {"A": "1", "B": "two words", "C": "x;y"}

    def test_rejects_command_substitution(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("A=$(rm -rf /)\n")
        with pytest.raises(ConfigError, match="forbidden pattern"):
            load_dotenv(path)

    def test_rejects_missing_equals(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("JUSTAKEY\n")
        with pytest.raises(ConfigError, match="no '='"):
            load_dotenv(path)

    def test_rejects_bad_key(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("1BAD=x\n")
        with pytest.raises(ConfigError, match="invalid key"):
            load_dotenv(path)


class TestLoadConfig:
    """Tests for layered config loading."""

    def test_defaults(self, tmp_path):
        config = load_config(tmp_path)
        assert config.working_dir == tmp_path
        assert config.model == "claude-sonnet-4-20250514"
        assert config.max_turns == 50
        assert config.progress_mode == "git"
        assert config.run_gates is True
        assert config.invalid is None

    def test_priority_env_over_yaml_over_dotenv(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("RALPH_MODEL=from-dotenv\nRALPH_MAX_TURNS=5\nANTHROPIC_API_KEY=sk-dot\n")
        (tmp_path / "ralph.yaml").write_text("model: from-yaml\nmax_turns: 7\n")
        monkeypatch.setenv("RALPH_MODEL", "from-env")

        config = load_config(tmp_path)
        assert config.model == "from-env"
        assert config.max_turns == 7
        assert config.api_key == "sk-dot"

    def test_explicit_config_path(self, tmp_path):
        custom = tmp_path / "custom.yaml"
        custom.write_text("progress_mode: file\nrun_gates: false\n")
        config = load_config(tmp_path, config_path=custom)
        assert config.progress_mode == "file"
        assert config.run_gates is False

    def test_missing_explicit_config_warns(self, tmp_path, capsys):
        load_config(tmp_path, config_path=tmp_path / "nope.yaml")
        assert "Config file not found" in capsys.readouterr().out

    def test_malformed_yaml_ignored(self, tmp_path, caplog):
        (tmp_path / "ralph.yaml").write_text("model: [unclosed\n")
        config = load_config(tmp_path)
        assert config.model == "claude-sonnet-4-20250514"
        assert "Failed to parse" in caplog.text

    def test_bad_integer_collected(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RALPH_MAX_TURNS", "lots")
        config = load_config(tmp_path)
        assert config.invalid == {"max_turns": "lots"}

    def test_bool_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RALPH_RUN_GATES", "no")
        monkeypatch.setenv("RALPH_VERBOSE", "1")
        config = load_config(tmp_path)
        assert config.run_gates is False
        assert config.verbose is True


class TestValidateConfig:
    """Tests for validate_config()."""

    def test_valid(self, tmp_path):
        assert validate_config(RalphConfig(working_dir=tmp_path, api_key="sk-x")) == []

    def test_api_key_required(self, tmp_path):
        errors = validate_config(RalphConfig(working_dir=tmp_path))
        assert any("ANTHROPIC_API_KEY" in e for e in errors)

    def test_api_key_optional_for_oauth(self, tmp_path):
        assert validate_config(RalphConfig(working_dir=tmp_path, auth_mode="oauth")) == []

    def test_api_key_skipped_when_not_required(self, tmp_path):
        assert validate_config(RalphConfig(working_dir=tmp_path), require_auth=False) == []

    def test_reports_every_error(self, tmp_path):
        config = RalphConfig(
            working_dir=tmp_path / "missing",
            api_key="sk-x",
            max_turns=0,
            git_log_count=500,
            progress_mode="db",
        )
        errors = validate_config(config)
        assert len(errors) == 4
        assert any("max_turns must be between 1 and 500" in e for e in errors)
        assert any("git_log_count" in e for e in errors)
        assert any("progress_mode" in e for e in errors)
        assert any("working directory does not exist" in e for e in errors)

    def test_unparseable_integer(self, tmp_path):
        config = RalphConfig(working_dir=tmp_path, api_key="sk-x", invalid={"gate_timeout": "soon"})
        assert validate_config(config) == ["gate_timeout must be an integer (got 'soon')"]

    def test_bad_auth_mode(self, tmp_path):
        errors = validate_config(RalphConfig(working_dir=tmp_path, auth_mode="token"))
        assert errors == ["auth_mode must be one of api_key, oauth (got 'token')"]
