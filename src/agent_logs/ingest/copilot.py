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
from agent_logs.ingest.sources import SOURCE_BY_NAME
from agent_logs.ingest.tool_args import COPILOT_ARGUMENTS, extract_tool_use
from agent_logs.models import AssistantEntry, Entry, ToolUse, UserEntry

SESSION_START = "session.start"
USER_MESSAGE = "user.message"
ASSISTANT_MESSAGE = "assistant.message"


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


class CopilotLineParser:
    """Stateful parser for Copilot CLI ``events.jsonl`` lines.

    Only ``session.start`` carries the session id; every later event in the
    stream inherits it.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id

    def __call__(self, line: str) -> Entry | None:
        if not line.strip():
            return None

        try:
            event = json.loads(line)
        except (ValueError, RecursionError) as exc:
            raise MalformedRecordError(f"Invalid JSON: {exc}") from exc

        if not isinstance(event, dict):
            raise MalformedRecordError("Event is not a JSON object")

        event_type = event.get("type")
        if not isinstance(event_type, str) or not event_type:
            raise MalformedRecordError("Missing required field: type")

        data = event.get("data")
        if event_type == SESSION_START:
            session_id = _optional_str(data.get("sessionId")) if isinstance(data, dict) else None
            if session_id is None:
                raise MalformedRecordError("session.start without sessionId")
            self.session_id = session_id
            return None

        if event_type not in {USER_MESSAGE, ASSISTANT_MESSAGE}:
            return None

        event_id = _optional_str(event.get("id"))
        if event_id is None:
            raise MalformedRecordError("Missing required field: id")
        timestamp = parse_timestamp(event.get("timestamp"))
        if timestamp is None:
            raise MalformedRecordError("Missing or invalid timestamp")
        if not isinstance(data, dict):
            raise MalformedRecordError("Missing required field: data")

        base: dict[str, Any] = {
            "id": event_id,
            "timestamp": timestamp,
            "session_id": self.session_id or event_id,
            "parent_id": _optional_str(event.get("parentId")),
        }
        if event_type == USER_MESSAGE:
            content = _optional_str(data.get("content")) or _optional_str(
                data.get("transformedContent")
            )
            return UserEntry(**base, content=content or "")

        return AssistantEntry(
            **base,
            text_content=_optional_str(data.get("content")),
            tool_uses=self._tool_uses(data.get("toolRequests")),
            message_id=_optional_str(data.get("messageId")),
        )

    @staticmethod
    def _tool_uses(requests: Any) -> tuple[ToolUse, ...]:
        if not isinstance(requests, list):
            return ()
        tool_uses: list[ToolUse] = []
        for request in requests:
            if not isinstance(request, dict):
                continue
            name = _optional_str(request.get("name"))
            if name is None:
                continue
            tool_uses.append(
                extract_tool_use(
                    name,
                    request.get("arguments"),
                    COPILOT_ARGUMENTS,
                    tool_use_id=_optional_str(request.get("toolCallId")),
                )
            )
        return tuple(tool_uses)


class CopilotProvider(LogProvider):
    """Read Copilot CLI sessions from ``~/.copilot/session-state/<id>/events.jsonl``."""

    def __init__(
        self,
        base_path: Path | None = None,
        working_directory_filter: Path | str | None = None,
    ):
        self._base_path = (base_path or self._default_base_path()).expanduser()
        self.working_directory_filter = (
            str(working_directory_filter) if working_directory_filter is not None else None
        )

    @property
    def source_name(self) -> str:
        return "copilot"

    @property
    def base_path(self) -> Path:
        return self._base_path

    @staticmethod
    def _default_base_path() -> Path:
        copilot_home = os.environ.get("COPILOT_HOME", "").strip()
        if copilot_home:
            return Path(copilot_home) / "session-state"
        return Path.home().joinpath(*SOURCE_BY_NAME["copilot"].home_layout)

    def create_line_parser(self) -> LineParser:
        return CopilotLineParser()

    def discover_sources(self, since: datetime | None = None) -> list[Path]:
        if not self._base_path.is_dir():
            return []

        sources: list[Path] = []
        for session_dir in self._base_path.iterdir():
            events_file = session_dir / "events.jsonl"
            if not events_file.is_file():
                continue
            if since is not None and not modified_since(events_file, since):
                continue
            if self.working_directory_filter is not None and not self.session_matches_directory(
                events_file, self.working_directory_filter
            ):
                continue
            sources.append(events_file)

        return sorted(sources)

    @staticmethod
    def session_matches_directory(source: Path, directory: str) -> bool:
        """Cheap text scan for a quoted absolute path under ``directory``."""
        needle = f'"{directory.rstrip("/")}/'
        try:
            with source.open(encoding="utf-8", errors="replace") as file:
                return any(needle in line for line in file)
        except OSError:
            return False

    def session_id_for(self, source: Path) -> str:
        return source.parent.name or source.stem

    @staticmethod
    def extract_project_name(source: Path) -> str | None:
        return source.parent.name or None
