from __future__ import annotations

from pathlib import Path

from agent_logs.ingest.base import (
    LineParser,
    LiveLogProvider,
    LiveSessionInfo,
    LogProvider,
    MalformedRecordError,
    ParseError,
    ParseResult,
)
from agent_logs.ingest.claude_code import ClaudeCodeLineParser, ClaudeCodeProvider
from agent_logs.ingest.composite import CompositeProvider
from agent_logs.ingest.copilot import CopilotLineParser, CopilotProvider
from agent_logs.ingest.log_watcher import FileLiveProvider, LogWatcher
from agent_logs.ingest.sources import VALID_SOURCE_NAMES, normalize_source_name

__all__ = [
    "LogProvider",
    "LiveLogProvider",
    "LiveSessionInfo",
    "LineParser",
    "MalformedRecordError",
    "ParseError",
    "ParseResult",
    "ClaudeCodeLineParser",
    "ClaudeCodeProvider",
    "CopilotLineParser",
    "CopilotProvider",
    "CompositeProvider",
    "FileLiveProvider",
    "LogWatcher",
    "VALID_SOURCE_NAMES",
    "normalize_source_name",
    "get_default_providers",
    "get_provider",
]


def get_default_providers(
    claude_dir: Path | None = None,
    copilot_dir: Path | None = None,
) -> list[LogProvider]:
    """Return providers for all supported log sources."""
    return [
        ClaudeCodeProvider(base_path=claude_dir),
        CopilotProvider(base_path=copilot_dir),
    ]


def get_provider(
    source: str,
    claude_dir: Path | None = None,
    copilot_dir: Path | None = None,
) -> LogProvider:
    """Return a specific provider by source name or alias."""
    normalized = normalize_source_name(source)
    factories = {
        "claude-code": lambda: ClaudeCodeProvider(base_path=claude_dir),
        "copilot": lambda: CopilotProvider(base_path=copilot_dir),
    }
    factory = factories.get(normalized)
    if factory is not None:
        return factory()
    available = ", ".join(VALID_SOURCE_NAMES)
    raise ValueError(f"Unknown provider: {source}. Available: {available}")
