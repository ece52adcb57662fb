"""Group a session's tool invocations into classified logical changes.

Tool uses are walked in chronological order. A new group starts before a tool
use when a user message arrived since the previous tool use, the session id
changes, the gap since the previous tool use exceeds ``max_gap``, or the
current group holds only read/search tools and the incoming tool writes or
edits a file. Boundaries fall between tool uses, so one assistant entry can
be split across two changes. The rule only depends on the current group and
the next tool, so regrouping the tools of one produced change (each wrapped
in its own entry at the change start time) yields that same change.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from pathlib import PurePosixPath
from typing import assert_never

from agent_logs.models import (
    AssistantEntry,
    BaseEntry,
    ChangeType,
    LogicalChange,
    MetadataEntry,
    SummaryEntry,
    SystemEntry,
    ToolUse,
    UserEntry,
)

DEFAULT_MAX_GAP = timedelta(seconds=30)


class ToolCategory(StrEnum):
    EXPLORE = "explore"
    WRITE = "write"
    EDIT = "edit"
    EXECUTE = "execute"
    OTHER = "other"


_CATEGORY_BY_NAME: dict[str, ToolCategory] = {
    **dict.fromkeys(
        (
            "read",
            "grep",
            "glob",
            "ls",
            "view",
            "search",
            "find",
            "list_dir",
            "read_file",
            "webfetch",
            "websearch",
        ),
        ToolCategory.EXPLORE,
    ),
    **dict.fromkeys(("write", "create", "write_file", "create_file"), ToolCategory.WRITE),
    **dict.fromkeys(
        (
            "edit",
            "multiedit",
            "notebookedit",
            "str_replace",
            "str_replace_editor",
            "edit_file",
            "apply_patch",
        ),
        ToolCategory.EDIT,
    ),
    **dict.fromkeys(("bash", "shell", "powershell", "run_command"), ToolCategory.EXECUTE),
}

_MUTATIONS = {ToolCategory.WRITE, ToolCategory.EDIT}
_CHANGE_TYPE_BY_CATEGORY = {
    ToolCategory.WRITE: ChangeType.WRITE,
    ToolCategory.EDIT: ChangeType.EDIT,
    ToolCategory.EXECUTE: ChangeType.EXECUTE,
}


def tool_category(name: str) -> ToolCategory:
    return _CATEGORY_BY_NAME.get(name.strip().lower(), ToolCategory.OTHER)


def classify(tools: Iterable[ToolUse]) -> ChangeType:
    """Classify a group from the set of tool categories it contains."""
    categories = {tool_category(tool.name) for tool in tools}
    if categories == {ToolCategory.EXPLORE}:
        return ChangeType.EXPLORE

    modifying = categories & _CHANGE_TYPE_BY_CATEGORY.keys()
    if len(modifying) == 1:
        return _CHANGE_TYPE_BY_CATEGORY[next(iter(modifying))]
    return ChangeType.MIXED


def describe(tools: list[ToolUse], change_type: ChangeType) -> str:
    files: list[str] = []
    for tool in tools:
        if tool.file_path:
            name = PurePosixPath(tool.file_path.replace("\\", "/")).name or tool.file_path
            if name not in files:
                files.append(name)
    count = len(files)

    if change_type is ChangeType.EXPLORE:
        if count == 0:
            return "Explored codebase"
        return f"Read {files[0]}" if count == 1 else f"Explored {count} files"
    if change_type is ChangeType.WRITE:
        return f"Created {files[0]}" if count == 1 else f"Created {count} files"
    if change_type is ChangeType.EDIT:
        return f"Edited {files[0]}" if count == 1 else f"Edited {count} files"
    if change_type is ChangeType.EXECUTE:
        command = next(
            (
                tool.command
                for tool in tools
                if tool_category(tool.name) is ToolCategory.EXECUTE and tool.command
            ),
            None,
        )
        return f"Ran: {_truncate_command(command)}" if command else "Executed commands"
    if count > 0:
        return f"Modified {count} files"
    return f"Performed {len(tools)} operations"


def _truncate_command(command: str) -> str:
    first_line = command.split("\n", 1)[0].strip()
    return f"{first_line[:37]}..." if len(first_line) > 40 else first_line


@dataclass
class _OpenGroup:
    session_id: str
    tools: list[ToolUse] = field(default_factory=list)
    timestamps: list[datetime] = field(default_factory=list)

    @property
    def explore_only(self) -> bool:
        return all(tool_category(tool.name) is ToolCategory.EXPLORE for tool in self.tools)


class ChangeGrouper:
    def __init__(self, max_gap: timedelta = DEFAULT_MAX_GAP):
        self.max_gap = max_gap

    def group(self, entries: Iterable[BaseEntry]) -> list[LogicalChange]:
        """Partition the tool uses of ``entries`` into ordered logical changes.

        Entries are sorted by timestamp first; ties keep their input order.
        """
        ordered = sorted(entries, key=lambda entry: entry.timestamp)
        changes: list[LogicalChange] = []
        current: _OpenGroup | None = None

        def close() -> None:
            nonlocal current
            if current is not None and current.tools:
                changes.append(self._build_change(current, len(changes)))
            current = None

        for entry in ordered:
            if isinstance(entry, UserEntry):
                close()
            elif isinstance(entry, AssistantEntry):
                for tool in entry.tool_uses:
                    if current is not None and self._starts_new_group(current, entry, tool):
                        close()
                    if current is None:
                        current = _OpenGroup(session_id=entry.session_id)
                    current.tools.append(tool)
                    current.timestamps.append(entry.timestamp)
            elif isinstance(entry, (SystemEntry, SummaryEntry, MetadataEntry)):
                continue
            else:
                assert_never(entry)

        close()
        return changes

    def _starts_new_group(self, current: _OpenGroup, entry: AssistantEntry, tool: ToolUse) -> bool:
        if current.session_id != entry.session_id:
            return True
        if entry.timestamp - current.timestamps[-1] > self.max_gap:
            return True
        return current.explore_only and tool_category(tool.name) in _MUTATIONS

    @staticmethod
    def _build_change(group: _OpenGroup, index: int) -> LogicalChange:
        start_time = min(group.timestamps)
        end_time = max(group.timestamps)
        change_type = classify(group.tools)
        digest = hashlib.sha1(
            f"{group.session_id}|{start_time.isoformat()}|{index}".encode(),
            usedforsecurity=False,
        ).hexdigest()
        return LogicalChange(
            id=digest[:8],
            start_time=start_time,
            end_time=end_time,
            session_id=group.session_id,
            description=describe(group.tools, change_type),
            tools=tuple(group.tools),
            change_type=change_type,
        )
