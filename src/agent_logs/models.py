from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """UTC now with timezone info so comparisons with parsed timestamps work."""
    return datetime.now(UTC)


# --- content blocks ---------------------------------------------------------


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str

    model_config = ConfigDict(frozen=True)


class ToolUseBlock(BaseModel):
    """Assistant request for a tool call, input kept as raw JSON text."""

    type: Literal["tool_use"] = "tool_use"
    tool_use_id: str = ""
    name: str
    input_json: str | None = None

    model_config = ConfigDict(frozen=True)


class ToolResultBlock(BaseModel):
    """Tool output returned inside a user message."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    tool_name: str | None = None
    content: str | None = None
    is_error: bool = False

    model_config = ConfigDict(frozen=True)


class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    text: str
    signature: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def char_count(self) -> int:
        return len(self.text)


class ImageBlock(BaseModel):
    type: Literal["image"] = "image"
    media_type: str = "image/png"
    source: str = ""

    model_config = ConfigDict(frozen=True)


ContentBlock = Annotated[
    TextBlock | ToolUseBlock | ToolResultBlock | ThinkingBlock | ImageBlock,
    Field(discriminator="type"),
]


# --- entries ----------------------------------------------------------------


class ToolUse(BaseModel):
    """One tool invocation with arguments normalized across producers."""

    name: str
    file_path: str | None = None
    content: str | None = None
    old_content: str | None = None
    command: str | None = None
    tool_use_id: str | None = None

    model_config = ConfigDict(frozen=True)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    service_tier: str | None = None

    model_config = ConfigDict(frozen=True)


class BaseEntry(BaseModel):
    """Fields shared by every normalized log record. Immutable after parsing."""

    id: str
    timestamp: datetime
    session_id: str
    project_path: str | None = None
    parent_id: str | None = None  # lookup only, never ownership
    version: str | None = None
    git_branch: str | None = None
    is_sidechain: bool = False

    model_config = ConfigDict(frozen=True)


class UserEntry(BaseEntry):
    kind: Literal["user"] = "user"
    content: str = ""
    content_blocks: tuple[ContentBlock, ...] = ()


class AssistantEntry(BaseEntry):
    kind: Literal["assistant"] = "assistant"
    text_content: str | None = None
    tool_uses: tuple[ToolUse, ...] = ()
    usage: TokenUsage | None = None
    message_id: str | None = None
    content_blocks: tuple[ContentBlock, ...] = ()
    stop_reason: str | None = None
    model: str | None = None

    @property
    def thinking_blocks(self) -> tuple[ThinkingBlock, ...]:
        return tuple(block for block in self.content_blocks if isinstance(block, ThinkingBlock))


class SystemEntry(BaseEntry):
    kind: Literal["system"] = "system"
    content: str = ""


class SummaryEntry(BaseEntry):
    """Context-window compaction summary."""

    kind: Literal["summary"] = "summary"
    summary: str = ""


class MetadataEntry(BaseEntry):
    """Non-conversation event such as a file-history snapshot."""

    kind: Literal["metadata"] = "metadata"
    entry_type: str


Entry = Annotated[
    UserEntry | AssistantEntry | SystemEntry | SummaryEntry | MetadataEntry,
    Field(discriminator="kind"),
]


# --- derived projections ----------------------------------------------------


class ChangeType(StrEnum):
    EXPLORE = "explore"  # read/search only
    WRITE = "write"  # new files
    EDIT = "edit"  # existing files
    EXECUTE = "execute"  # shell commands
    MIXED = "mixed"


class LogicalChange(BaseModel):
    """A grouped, classified run of consecutive tool invocations."""

    id: str
    start_time: datetime
    end_time: datetime
    session_id: str
    description: str
    tools: tuple[ToolUse, ...]
    change_type: ChangeType

    model_config = ConfigDict(frozen=True)

    @property
    def affected_files(self) -> list[str]:
        files: list[str] = []
        for tool in self.tools:
            if tool.file_path is not None and tool.file_path not in files:
                files.append(tool.file_path)
        return files

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time


class EmbeddedCommand(BaseModel):
    """One invocation of the target CLI found inside a shell command."""

    command: str  # subcommand such as "build", or a leading flag such as "--info"
    full_command: str
    arguments: str | None = None
    timestamp: datetime

    model_config = ConfigDict(frozen=True)


class EmbeddedCommandStats(BaseModel):
    command_counts: dict[str, int] = Field(default_factory=dict)
    total_commands: int = 0

    model_config = ConfigDict(frozen=True)


class Session(BaseModel):
    """Snapshot of one conversation session, recomputed on every query."""

    id: str
    project_path: str | None = None
    project_name: str | None = None
    start_time: datetime
    last_activity: datetime
    is_active: bool = False
    user_message_count: int = 0
    assistant_message_count: int = 0
    tool_call_count: int = 0
    changes: tuple[LogicalChange, ...] = ()
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_creation_tokens: int = 0
    total_cache_read_tokens: int = 0
    commands: tuple[EmbeddedCommand, ...] = ()
    command_stats: EmbeddedCommandStats = Field(default_factory=EmbeddedCommandStats)

    model_config = ConfigDict(frozen=True)

    @property
    def duration(self) -> timedelta:
        return self.last_activity - self.start_time


class Stats(BaseModel):
    """Aggregate statistics across sessions."""

    total_sessions: int = 0
    active_sessions: int = 0
    total_user_messages: int = 0
    total_assistant_messages: int = 0
    total_tool_calls: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    tool_usage_counts: dict[str, int] = Field(default_factory=dict)
    hourly_activity: dict[int, int] = Field(default_factory=dict)  # hour 0-23 -> sessions

    model_config = ConfigDict(frozen=True)


class DailyStats(BaseModel):
    day: date
    session_count: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    tool_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    model_config = ConfigDict(frozen=True)
