from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from agent_logs.core.config import AgentLogsConfig, ConfigError, default_config_path, load_config


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.yaml")

    assert config == AgentLogsConfig()
    assert config.providers.enabled == ["claude-code", "copilot"]
    assert config.providers.claude_dir is None
    assert config.sessions.active_threshold == timedelta(minutes=5)
    assert config.sessions.change_gap == timedelta(seconds=30)
    assert config.commands.target == "dotnet"
    assert config.logging.level == "WARNING"


def test_load_values(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "providers:\n"
        "  enabled: [claude, copilot-cli, claude_code]\n"
        f"  claude_dir: {tmp_path / 'claude'}\n"
        "sessions:\n"
        "  active_threshold_minutes: 15\n"
        "  change_gap_seconds: 5\n"
        "commands:\n"
        "  target: npm\n"
        "logging:\n"
        "  level: debug\n"
    )

    config = load_config(path)

    assert config.providers.enabled == ["claude-code", "copilot"]
    assert config.providers.claude_dir == tmp_path / "claude"
    assert config.sessions.active_threshold == timedelta(minutes=15)
    assert config.sessions.change_gap == timedelta(seconds=5)
    assert config.commands.target == "npm"
    assert config.logging.level == "DEBUG"


def test_extends_merges_base_first(tmp_path: Path) -> None:
    (tmp_path / "shared").mkdir()
    (tmp_path / "shared" / "base.yaml").write_text(
        "sessions:\n  active_threshold_minutes: 30\n  change_gap_seconds: 90\n"
        "commands:\n  target: cargo\n"
    )
    path = tmp_path / "config.yaml"
    path.write_text(
        "extends:\n  - shared/base.yaml\nsessions:\n  change_gap_seconds: 10\n"
    )

    config = load_config(path)

    assert config.sessions.active_threshold_minutes == 30
    assert config.sessions.change_gap_seconds == 10
    assert config.commands.target == "cargo"


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("")

    assert load_config(path) == AgentLogsConfig()


@pytest.mark.parametrize(
    "text",
    [
        "providers: [unclosed\n",
        "- just\n- a list\n",
        "providers:\n  enabled: [vim]\n",
        "sessions:\n  active_threshold_minutes: -1\n",
        "logging:\n  level: LOUD\n",
    ],
)
def test_invalid_config_raises(tmp_path: Path, text: str) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(text)

    with pytest.raises(ConfigError):
        load_config(path)


def test_config_error_is_value_error() -> None:
    assert issubclass(ConfigError, ValueError)


def test_default_path_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_LOGS_CONFIG", str(tmp_path / "custom.yaml"))
    assert default_config_path() == tmp_path / "custom.yaml"

    monkeypatch.delenv("AGENT_LOGS_CONFIG")
    assert default_config_path() == Path.home() / ".config" / "agent-logs" / "config.yaml"


def test_load_config_uses_env_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "custom.yaml"
    path.write_text("commands:\n  target: go\n")
    monkeypatch.setenv("AGENT_LOGS_CONFIG", str(path))

    assert load_config().commands.target == "go"
