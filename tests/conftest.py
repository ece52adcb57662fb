from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

FIXED_NOW = datetime(2025, 3, 14, 12, 0, 0, tzinfo=UTC)

WriteJsonl = Callable[[Path, Iterable[dict[str, Any] | str]], Path]


def _write_jsonl(path: Path, records: Iterable[dict[str, Any] | str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [record if isinstance(record, str) else json.dumps(record) for record in records]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def write_jsonl() -> WriteJsonl:
    """Write records (dicts or raw lines) as a JSONL file, creating parent dirs."""
    return _write_jsonl


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def claude_projects(tmp_path: Path) -> Path:
    """A Claude Code projects tree with one two-turn session of ``/work/demo``."""
    projects = tmp_path / "claude" / "projects"
    records = [
        {
            "type": "user",
            "uuid": "u-1",
            "sessionId": "sess-demo",
            "timestamp": "2025-03-14T11:56:00Z",
            "cwd": "/work/demo",
            "message": {"role": "user", "content": "Fix the build"},
        },
        {
            "type": "assistant",
            "uuid": "a-1",
            "parentUuid": "u-1",
            "sessionId": "sess-demo",
            "timestamp": "2025-03-14T11:56:05Z",
            "cwd": "/work/demo",
            "message": {
                "id": "msg-1",
                "role": "assistant",
                "model": "claude-sonnet-4",
                "content": [
                    {"type": "text", "text": "Let me look."},
                    {
                        "type": "tool_use",
                        "id": "toolu-1",
                        "name": "Read",
                        "input": {"file_path": "/work/demo/src/app.py"},
                    },
                ],
                "usage": {"input_tokens": 100, "output_tokens": 20},
            },
        },
        {
            "type": "user",
            "uuid": "u-2",
            "sessionId": "sess-demo",
            "timestamp": "2025-03-14T11:56:06Z",
            "cwd": "/work/demo",
            "message": {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "toolu-1", "content": "print('hi')"}
                ],
            },
        },
        {
            "type": "assistant",
            "uuid": "a-2",
            "parentUuid": "u-2",
            "sessionId": "sess-demo",
            "timestamp": "2025-03-14T11:56:10Z",
            "cwd": "/work/demo",
            "message": {
                "id": "msg-2",
                "role": "assistant",
                "content": [
                    {
                        "type": "tool_use",
                        "id": "toolu-2",
                        "name": "Bash",
                        "input": {"command": "cd /work/demo && dotnet build"},
                    }
                ],
                "usage": {"input_tokens": 50, "output_tokens": 10, "cache_read_input_tokens": 5},
            },
        },
    ]
    _write_jsonl(projects / "-work-demo" / "sess-demo.jsonl", records)
    return projects
