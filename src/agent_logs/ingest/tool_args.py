"""Normalize producer-specific tool arguments into the shared ToolUse shape.

Each producer names the same argument differently (``file_path`` vs ``path``,
``new_string`` vs ``new_str``). A ``ToolArgumentTable`` lists, per tool name,
the raw keys to try for every ToolUse field in priority order; the first key
holding a string wins.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from agent_logs.models import ToolUse


@dataclass(frozen=True)
class ToolArgumentRule:
    file_path: tuple[str, ...] = ()
    content: tuple[str, ...] = ()
    old_content: tuple[str, ...] = ()
    command: tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolArgumentTable:
    name: str
    fallback: ToolArgumentRule
    rules: Mapping[str, ToolArgumentRule] = field(default_factory=dict)

    def rule_for(self, tool_name: str) -> ToolArgumentRule:
        return self.rules.get(tool_name.strip().lower(), self.fallback)


_CLAUDE_FILE_KEYS = ("file_path", "path")

CLAUDE_CODE_ARGUMENTS = ToolArgumentTable(
    name="claude-code",
    fallback=ToolArgumentRule(file_path=_CLAUDE_FILE_KEYS, content=("content",)),
    rules={
        "read": ToolArgumentRule(file_path=_CLAUDE_FILE_KEYS),
        "write": ToolArgumentRule(file_path=_CLAUDE_FILE_KEYS, content=("content",)),
        "edit": ToolArgumentRule(
            file_path=_CLAUDE_FILE_KEYS,
            content=("new_string",),
            old_content=("old_string",),
        ),
        "multiedit": ToolArgumentRule(file_path=_CLAUDE_FILE_KEYS),
        "notebookedit": ToolArgumentRule(
            file_path=("notebook_path", "file_path", "path"),
            content=("new_source",),
        ),
        "glob": ToolArgumentRule(file_path=("path",), command=("pattern",)),
        "grep": ToolArgumentRule(file_path=("path",), command=("pattern",)),
        "bash": ToolArgumentRule(command=("command",)),
    },
)

COPILOT_ARGUMENTS = ToolArgumentTable(
    name="copilot",
    fallback=ToolArgumentRule(
        file_path=("path", "file_path"),
        content=("content", "file_text", "new_str"),
        old_content=("old_str", "old_string"),
        command=("command",),
    ),
)


def decode_arguments(raw_value: Any) -> dict[str, Any]:
    """Return tool arguments as a dict; JSON-encoded strings are decoded."""
    if isinstance(raw_value, dict):
        return raw_value
    if isinstance(raw_value, str):
        stripped = raw_value.strip()
        if not stripped:
            return {}
        try:
            decoded = json.loads(stripped)
        except (ValueError, RecursionError):
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _first_string(arguments: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = arguments.get(key)
        if isinstance(value, str):
            return value
    return None


def extract_tool_use(
    name: str,
    raw_arguments: Any,
    table: ToolArgumentTable,
    tool_use_id: str | None = None,
) -> ToolUse:
    arguments = decode_arguments(raw_arguments)
    rule = table.rule_for(name)
    return ToolUse(
        name=name,
        file_path=_first_string(arguments, rule.file_path),
        content=_first_string(arguments, rule.content),
        old_content=_first_string(arguments, rule.old_content),
        command=_first_string(arguments, rule.command),
        tool_use_id=tool_use_id or None,
    )
