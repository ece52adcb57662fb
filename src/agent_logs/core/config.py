from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from agent_logs.ingest.sources import VALID_SOURCE_NAMES, normalize_source_name

CONFIG_ENV_VAR = "AGENT_LOGS_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/agent-logs/config.yaml")


class ConfigError(ValueError):
    """Raised when a config file cannot be read or does not validate."""


class ProvidersConfig(BaseModel):
    """Which log sources to read and where they live."""

    enabled: list[str] = Field(default_factory=lambda: list(VALID_SOURCE_NAMES))
    claude_dir: Path | None = Field(
        default=None,
        description="Claude Code projects directory (default ~/.claude/projects)",
    )
    copilot_dir: Path | None = Field(
        default=None,
        description="Copilot CLI session-state directory (default ~/.copilot/session-state)",
    )

    @field_validator("enabled")
    @classmethod
    def _normalize_enabled(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for name in value:
            source = normalize_source_name(name)
            if source not in VALID_SOURCE_NAMES:
                raise ValueError(f"Unknown provider: {name}")
            if source not in normalized:
                normalized.append(source)
        return normalized


class SessionsConfig(BaseModel):
    active_threshold_minutes: float = Field(default=5, gt=0)
    change_gap_seconds: float = Field(
        default=30,
        gt=0,
        description="Largest pause between tool calls that still belongs to one change",
    )

    @property
    def active_threshold(self) -> timedelta:
        return timedelta(minutes=self.active_threshold_minutes)

    @property
    def change_gap(self) -> timedelta:
        return timedelta(seconds=self.change_gap_seconds)


class CommandsConfig(BaseModel):
    target: str = Field(default="dotnet", min_length=1)


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class AgentLogsConfig(BaseModel):
    """Root configuration for agent-logs' config.yaml."""

    extends: list[str] = Field(default_factory=list)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read config {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping")
    return data


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR, "").strip()
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH.expanduser()


def load_config(path: Path | None = None) -> AgentLogsConfig:
    """Load and resolve config.yaml with optional extends.

    ``extends`` entries are merged in order, relative to the config file's
    directory, and the file's own keys win. A missing file yields defaults.
    """
    main_path = (path or default_config_path()).expanduser()
    data = _load_yaml(main_path)

    extends = data.get("extends") or []
    if isinstance(extends, str):
        extends = [extends]
    merged: dict[str, Any] = {}

    for extend_path in extends:
        extended = Path(extend_path).expanduser()
        if not extended.is_absolute():
            extended = (main_path.parent / extended).resolve()
        merged = _deep_merge(merged, _load_yaml(extended))

    merged = _deep_merge(merged, data)
    try:
        return AgentLogsConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {main_path}: {exc}") from exc
