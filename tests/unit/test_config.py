"""Tests for settings loading and run configuration."""

from pathlib import Path

import pytest

from agent_loop.core.config import (
    DEFAULT_COMPLETION_MARKER,
    DEFAULT_HANG_SIGNATURES,
    AgentConfig,
    LoopSettings,
    RunConfiguration,
    SafeguardsConfig,
    load_settings,
    resolve_path,
)
from agent_loop.errors import ConfigurationError


class TestDefaults:
    def test_loop_defaults(self):
        settings = LoopSettings()

        assert settings.safeguards.safe_iteration_threshold == 50
        assert settings.safeguards.max_consecutive_failures == 3
        assert settings.markers.hang_signatures == DEFAULT_HANG_SIGNATURES
        assert settings.markers.completion_marker == DEFAULT_COMPLETION_MARKER
        assert settings.log_dir == Path("logs")

    def test_default_agent_command(self):
        assert AgentConfig().build_command() == [
            "claude",
            "--dangerously-skip-permissions",
            "--print",
        ]

    def test_empty_skip_permissions_flag_is_omitted(self):
        agent = AgentConfig(executable="codex", skip_permissions_flag="", extra_args=[])
        assert agent.build_command() == ["codex"]

    def test_context_files_checked_in_order(self):
        descriptions = [d for d, _ in LoopSettings().files.required()]
        assert descriptions == [
            "vision document",
            "agent instructions document",
            "guardrails document",
            "prompt document",
        ]


class TestLoadSettings:
    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "nope.yaml")
        assert settings.agent.executable == "claude"

    def test_missing_required_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Config file not found"):
            load_settings(tmp_path / "typo.yaml", required=True)

    def test_loads_yaml(self, tmp_path):
        path = tmp_path / "agent-loop.yaml"
        path.write_text(
            "agent:\n"
            "  executable: /opt/bin/agent\n"
            "safeguards:\n"
            "  max_consecutive_failures: 5\n"
            "  retry_delay: 0\n"
            "markers:\n"
            "  completion_marker: ALL DONE\n"
        )

        settings = load_settings(path)

        assert settings.agent.executable == "/opt/bin/agent"
        assert settings.safeguards.max_consecutive_failures == 5
        assert settings.safeguards.retry_delay == 0
        assert settings.markers.completion_marker == "ALL DONE"
        # Untouched sections keep their defaults
        assert settings.safeguards.safe_iteration_threshold == 50

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "agent-loop.yaml"
        path.write_text("")
        assert load_settings(path).safeguards.max_consecutive_failures == 3

    def test_expands_env_vars(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MY_AGENT_BIN", "/usr/local/bin/claude")
        path = tmp_path / "agent-loop.yaml"
        path.write_text("agent:\n  executable: ${MY_AGENT_BIN}\n")

        assert load_settings(path).agent.executable == "/usr/local/bin/claude"

    def test_unset_env_var_kept_literally(self, tmp_path):
        path = tmp_path / "agent-loop.yaml"
        path.write_text("agent:\n  executable: ${AGENT_LOOP_TEST_UNSET_VAR}\n")

        assert load_settings(path).agent.executable == "${AGENT_LOOP_TEST_UNSET_VAR}"

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / "agent-loop.yaml"
        path.write_text("agent: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid yaml"):
            load_settings(path)

    def test_non_mapping_raises(self, tmp_path):
        path = tmp_path / "agent-loop.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(path)

    @pytest.mark.parametrize(
        "body",
        [
            "safeguards:\n  max_consecutive_failures: 0\n",
            "safeguards:\n  poll_interval: 0\n",
            "safeguards:\n  retry_delay: -1\n",
            "markers:\n  completion_marker: '  '\n",
            "markers:\n  hang_signatures: ['']\n",
            "log_level: LOUD\n",
        ],
    )
    def test_invalid_values_raise(self, tmp_path, body):
        path = tmp_path / "agent-loop.yaml"
        path.write_text(body)

        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AGENT_LOOP_SAFEGUARDS__MAX_CONSECUTIVE_FAILURES", "7")
        settings = load_settings(tmp_path / "missing.yaml")
        assert settings.safeguards.max_consecutive_failures == 7

    def test_log_level_normalized(self):
        assert LoopSettings(log_level="debug").log_level == "DEBUG"


class TestRunConfiguration:
    def _config(self, iterations, **safeguards):
        settings = LoopSettings(safeguards=SafeguardsConfig(**safeguards))
        return RunConfiguration(
            iterations=iterations, payload="do work", workspace=Path("/ws"), settings=settings
        )

    def test_confirmation_only_above_threshold(self):
        assert self._config(50).needs_confirmation is False
        assert self._config(51).needs_confirmation is True

    def test_custom_threshold(self):
        config = self._config(6, safe_iteration_threshold=5)
        assert config.safe_iteration_threshold == 5
        assert config.needs_confirmation is True

    def test_rejects_non_positive_iterations(self):
        with pytest.raises(ValueError):
            self._config(0)

    def test_frozen(self):
        config = self._config(3)
        with pytest.raises(ValueError):
            config.iterations = 4


def test_resolve_path_relative_and_absolute(tmp_path):
    assert resolve_path(tmp_path, Path("PROMPT.md")) == tmp_path / "PROMPT.md"
    assert resolve_path(tmp_path, Path("/etc/x.md")) == Path("/etc/x.md")
