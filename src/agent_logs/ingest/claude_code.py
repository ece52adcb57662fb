from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from agent_logs.ingest.base import (
    LineParser,
    LogProvider,
    MalformedRecordError,
    modified_since,
    parse_timestamp,
)
from agent_logs.ingest.content_blocks import extract_text, parse_content_blocks
from agent_logs.ingest.sources import SOURCE_BY_NAME
from agent_logs.ingest.tool_args import CLAUDE_CODE_ARGUMENTS, extract_tool_use
from agent_logs.models import (
    AssistantEntry,
    ContentBlock,
    Entry,
    MetadataEntry,
    SummaryEntry,
    SystemEntry,
    TokenUsage,
    ToolResultBlock,
    ToolUse,
    UserEntry,
)

METADATA_TYPES = frozenset(
    {"metadata", "file-history-snapshot", "queue-operation", "turn_end", "progress"}
)
CONVERSATION_TYPES = frozenset({"user", "assistant", "system", "summary"})


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


class ClaudeCodeLineParser:
    """Stateful parser for Claude Code transcript lines.

    Remembers tool names by ``tool_use_id`` so later tool results can be
    labelled, and which API message ids have already reported token usage.
    """

    def __init__(self) -> None:
        self._tool_names: dict[str, str] = {}
        self._seen_message_ids: set[str] = set()

    def __call__(self, line: str) -> Entry | None:
        if not line.strip():
            return None

        try:
            record = json.loads(line)
        except (ValueError, RecursionError) as exc:
            raise MalformedRecordError(f"Invalid JSON: {exc}") from exc

        if not isinstance(record, dict):
            raise MalformedRecordError("Record is not a JSON object")

        raw_type = record.get("type")
        if not isinstance(raw_type, str) or not raw_type.strip():
            raise MalformedRecordError("Missing required field: type")

        record_type = raw_type.strip().lower()
        if record_type not in CONVERSATION_TYPES and record_type not in METADATA_TYPES:
            return None

        base = self._base_fields(record)
        if record_type == "user":
            return self._parse_user(record, base)
        if record_type == "assistant":
            return self._parse_assistant(record, base)
        if record_type == "system":
            return SystemEntry(**base, content=self._system_content(record))
        if record_type == "summary":
            return SummaryEntry(**base, summary=self._summary_text(record))
        return MetadataEntry(**base, entry_type=raw_type.strip())

    @staticmethod
    def _base_fields(record: dict[str, Any]) -> dict[str, Any]:
        uuid = _optional_str(record.get("uuid"))
        if uuid is None:
            raise MalformedRecordError("Missing required field: uuid")
        session_id = _optional_str(record.get("sessionId"))
        if session_id is None:
            raise MalformedRecordError("Missing required field: sessionId")
        timestamp = parse_timestamp(record.get("timestamp"))
        if timestamp is None:
            raise MalformedRecordError("Missing or invalid timestamp")

        return {
            "id": uuid,
            "timestamp": timestamp,
            "session_id": session_id,
            "project_path": _optional_str(record.get("cwd")),
            "parent_id": _optional_str(record.get("parentUuid")),
            "version": _optional_str(record.get("version")),
            "git_branch": _optional_str(record.get("gitBranch")),
            "is_sidechain": bool(record.get("isSidechain", False)),
        }

    @staticmethod
    def _message(record: dict[str, Any]) -> dict[str, Any]:
        message = record.get("message")
        if not isinstance(message, dict):
            raise MalformedRecordError("Missing required field: message")
        return message

    def _parse_user(self, record: dict[str, Any], base: dict[str, Any]) -> UserEntry:
        message = self._message(record)
        raw_content = message.get("content")
        blocks = tuple(
            self._resolve_tool_name(block) for block in parse_content_blocks(raw_content)
        )
        return UserEntry(
            **base,
            content=extract_text(raw_content) or "",
            content_blocks=blocks,
        )

    def _resolve_tool_name(self, block: ContentBlock) -> ContentBlock:
        if not isinstance(block, ToolResultBlock) or block.tool_name is not None:
            return block
        name = self._tool_names.get(block.tool_use_id)
        return block.model_copy(update={"tool_name": name}) if name else block

    def _parse_assistant(self, record: dict[str, Any], base: dict[str, Any]) -> AssistantEntry:
        message = self._message(record)
        raw_content = message.get("content")

        text_parts: list[str] = []
        tool_uses: list[ToolUse] = []
        if isinstance(raw_content, list):
            for block in raw_content:
                if not isinstance(block, dict):
                    continue
                block_type = block.get("type")
                if block_type == "text" and isinstance(block.get("text"), str) and block["text"]:
                    text_parts.append(block["text"])
                elif block_type == "tool_use" and isinstance(block.get("name"), str):
                    if not block["name"]:
                        continue
                    tool_use = extract_tool_use(
                        block["name"],
                        block.get("input"),
                        CLAUDE_CODE_ARGUMENTS,
                        tool_use_id=_optional_str(block.get("id")),
                    )
                    if tool_use.tool_use_id:
                        self._tool_names[tool_use.tool_use_id] = tool_use.name
                    tool_uses.append(tool_use)

        message_id = _optional_str(message.get("id"))
        usage = self._parse_usage(message.get("usage"))
        if message_id is not None:
            # One API response is split over several lines that repeat its usage.
            if message_id in self._seen_message_ids:
                usage = None
            self._seen_message_ids.add(message_id)

        return AssistantEntry(
            **base,
            text_content="\n".join(text_parts) if text_parts else None,
            tool_uses=tuple(tool_uses),
            usage=usage,
            message_id=message_id,
            content_blocks=parse_content_blocks(raw_content),
            stop_reason=_optional_str(message.get("stop_reason")),
            model=_optional_str(message.get("model")),
        )

    @staticmethod
    def _parse_usage(raw: Any) -> TokenUsage | None:
        if not isinstance(raw, dict):
            return None
        return TokenUsage(
            input_tokens=_as_int(raw.get("input_tokens")),
            output_tokens=_as_int(raw.get("output_tokens")),
            cache_creation_input_tokens=_as_int(raw.get("cache_creation_input_tokens")),
            cache_read_input_tokens=_as_int(raw.get("cache_read_input_tokens")),
            service_tier=_optional_str(raw.get("service_tier")),
        )

    @staticmethod
    def _system_content(record: dict[str, Any]) -> str:
        message = record.get("message")
        if isinstance(message, dict):
            return extract_text(message.get("content")) or ""
        content = record.get("content")
        return content if isinstance(content, str) else ""

    @staticmethod
    def _summary_text(record: dict[str, Any]) -> str:
        summary = record.get("summary")
        if isinstance(summary, str) and summary:
            return summary
        message = record.get("message")
        if isinstance(message, dict):
            return extract_text(message.get("content")) or ""
        return ""


class ClaudeCodeProvider(LogProvider):
    """Read Claude Code transcripts from ``~/.claude/projects/<encoded-dir>/*.jsonl``."""

    def __init__(
        self,
        base_path: Path | None = None,
        project_dir_filter: str | None = None,
    ):
        self._base_path = (base_path or self._default_base_path()).expanduser()
        self.project_dir_filter = project_dir_filter

    @property
    def source_name(self) -> str:
        return "claude-code"

    @property
    def base_path(self) -> Path:
        return self._base_path

    @staticmethod
    def _default_base_path() -> Path:
        config_dir = os.environ.get("CLAUDE_CONFIG_DIR", "").strip()
        if config_dir:
            return Path(config_dir) / "projects"
        return Path.home().joinpath(*SOURCE_BY_NAME["claude-code"].home_layout)

    @staticmethod
    def encode_project_path(directory: Path | str) -> str:
        """Encode a directory the way Claude Code names its project folders.

        ``/home/rich/git/foo`` becomes ``-home-rich-git-foo``.
        """
        normalized = str(Path(directory).expanduser().absolute()).rstrip(os.sep)
        return normalized.replace(os.sep, "-")

    def find_project_dir(self, working_directory: Path | str) -> str | None:
        encoded = self.encode_project_path(working_directory)
        return encoded if (self._base_path / encoded).is_dir() else None

    def get_project_log_path(self, project_dir_name: str | None) -> Path:
        return self._base_path / project_dir_name if project_dir_name else self._base_path

    def create_line_parser(self) -> LineParser:
        return ClaudeCodeLineParser()

    def discover_sources(self, since: datetime | None = None) -> list[Path]:
        if not self._base_path.is_dir():
            return []

        if self.project_dir_filter is not None:
            project_dir = self._base_path / self.project_dir_filter
            project_dirs = [project_dir] if project_dir.is_dir() else []
        else:
            project_dirs = [path for path in self._base_path.iterdir() if path.is_dir()]

        sources: list[Path] = []
        for project_dir in project_dirs:
            for session_file in project_dir.glob("*.jsonl"):
                if since is not None and not modified_since(session_file, since):
                    continue
                sources.append(session_file)

        return sorted(sources)

    @staticmethod
    def extract_project_name(source: Path) -> str | None:
        """``.../-Users-rich-git-myproject/<id>.jsonl`` gives ``myproject``."""
        dir_name = source.parent.name
        if not dir_name:
            return None
        parts = [part for part in dir_name.split("-") if part]
        return parts[-1] if parts else dir_name

    @staticmethod
    def extract_project_path(source: Path) -> str | None:
        dir_name = source.parent.name
        if not dir_name:
            return None
        if dir_name.startswith("-"):
            return "/" + dir_name[1:].replace("-", "/")
        return dir_name.replace("-", "/")

    def session_id_for(self, source: Path) -> str:
        return source.stem
