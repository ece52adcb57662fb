from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from agent_logs.core.aggregator import SessionAggregator, project_name_from_path
from agent_logs.core.commands import CommandExtractor
from agent_logs.ingest import ClaudeCodeProvider, LogProvider
from agent_logs.ingest.base import LineParser
from agent_logs.models import AssistantEntry, Entry, TokenUsage, ToolUse, UserEntry

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=UTC)


def _user(entry_id: str, at: datetime, session_id: str = "s1", **extra) -> Entry:
    return UserEntry(id=entry_id, timestamp=at, session_id=session_id, content="hi", **extra)


def _assistant(
    entry_id: str,
    at: datetime,
    *tools: ToolUse,
    session_id: str = "s1",
    usage: TokenUsage | None = None,
    **extra,
) -> Entry:
    return AssistantEntry(
        id=entry_id, timestamp=at, session_id=session_id, tool_uses=tools, usage=usage, **extra
    )


@pytest.fixture
def aggregator(clock: Callable[[], datetime]) -> SessionAggregator:
    return SessionAggregator(clock=clock)


def test_bounds_follow_min_and_max_in_any_order(aggregator: SessionAggregator) -> None:
    stamps = [NOW - timedelta(minutes=minutes) for minutes in (7, 3, 12, 1, 9)]
    shuffled = list(stamps)
    random.Random(3).shuffle(shuffled)

    for index, stamp in enumerate(shuffled):
        aggregator.add_entry(_user(f"u{index}", stamp))

    session = aggregator.get("s1")
    assert session is not None
    assert session.start_time == min(stamps)
    assert session.last_activity == max(stamps)
    assert session.last_activity >= session.start_time


def test_get_entries_sorted(aggregator: SessionAggregator) -> None:
    aggregator.add_entry(_user("late", NOW))
    aggregator.add_entry(_user("early", NOW - timedelta(hours=1)))

    assert [entry.id for entry in aggregator.get_entries("s1")] == ["early", "late"]
    assert aggregator.get_entries("missing") == []
    assert aggregator.get("missing") is None


def test_add_entry_does_not_dedup(aggregator: SessionAggregator) -> None:
    entry = _user("u1", NOW)

    aggregator.add_entry(entry)
    aggregator.add_entry(entry)

    assert len(aggregator.get_entries("s1")) == 2


def test_load_from_source_dedups_across_sources(aggregator: SessionAggregator) -> None:
    first = [_user("U", NOW), _user("A", NOW)]
    second = [_user("U", NOW), _user("B", NOW)]

    added = aggregator.load_from_source(iter(first)) + aggregator.load_from_source(iter(second))

    ids = [entry.id for entry in aggregator.get_entries("s1")]
    assert added == 3
    assert ids.count("U") == 1
    assert sorted(ids) == ["A", "B", "U"]


def test_add_unique_reports_duplicates(aggregator: SessionAggregator) -> None:
    assert aggregator.add_unique(_user("u1", NOW)) is True
    assert aggregator.add_unique(_user("u1", NOW)) is False


def test_is_active_boundary_is_inclusive(clock: Callable[[], datetime]) -> None:
    aggregator = SessionAggregator(timedelta(minutes=5), clock=clock)
    aggregator.add_entry(_user("edge", NOW - timedelta(minutes=5), session_id="edge"))
    aggregator.add_entry(
        _user("past", NOW - timedelta(minutes=5, microseconds=1), session_id="past")
    )

    edge = aggregator.get("edge")
    past = aggregator.get("past")

    assert edge is not None and edge.is_active
    assert past is not None and not past.is_active
    assert [session.id for session in aggregator.list_active()] == ["edge"]
    assert {session.id for session in aggregator.list_active(timedelta(hours=1))} == {
        "edge",
        "past",
    }


def test_list_all_sorted_by_last_activity(aggregator: SessionAggregator) -> None:
    for offset, session_id in [(30, "old"), (1, "new"), (10, "mid")]:
        aggregator.add_entry(_user(session_id, NOW - timedelta(minutes=offset), session_id))

    assert [session.id for session in aggregator.list_all()] == ["new", "mid", "old"]
    assert [session.id for session in aggregator.list_recent(2)] == ["new", "mid"]
    assert aggregator.list_recent(0) == []
    assert sorted(aggregator.session_ids()) == ["mid", "new", "old"]
    assert len(aggregator) == 3


def test_session_projection(aggregator: SessionAggregator) -> None:
    start = NOW - timedelta(minutes=2)
    aggregator.add_entry(_user("u1", start, project_path="/home/dev/shop"))
    aggregator.add_entry(
        _assistant(
            "a1",
            start + timedelta(seconds=5),
            ToolUse(name="Read", file_path="/home/dev/shop/Program.cs"),
            usage=TokenUsage(
                input_tokens=100,
                output_tokens=10,
                cache_creation_input_tokens=4,
                cache_read_input_tokens=6,
            ),
        )
    )
    aggregator.add_entry(
        _assistant(
            "a2",
            start + timedelta(seconds=9),
            ToolUse(name="Bash", command="cd /home/dev/shop && dotnet build && dotnet test"),
            ToolUse(name="Read", file_path="/home/dev/shop/out.log"),
        )
    )
    aggregator.add_entry(
        _assistant(
            "a3",
            start + timedelta(seconds=12),
            usage=TokenUsage(input_tokens=1, output_tokens=2),
        )
    )

    session = aggregator.get("s1")

    assert session is not None
    assert session.project_path == "/home/dev/shop"
    assert session.project_name == "shop"
    assert session.user_message_count == 1
    assert session.assistant_message_count == 3
    assert session.tool_call_count == 3
    assert session.total_input_tokens == 101
    assert session.total_output_tokens == 12
    assert session.total_cache_creation_tokens == 4
    assert session.total_cache_read_tokens == 6
    assert [command.command for command in session.commands] == ["build", "test"]
    assert session.command_stats.command_counts == {"build": 1, "test": 1}
    assert session.command_stats.total_commands == 2
    assert session.duration == timedelta(seconds=12)


def test_every_tool_lands_in_exactly_one_change(aggregator: SessionAggregator) -> None:
    tools = [
        ToolUse(name="Read", file_path="/a.py"),
        ToolUse(name="Edit", file_path="/a.py"),
        ToolUse(name="Bash", command="pytest"),
        ToolUse(name="Write", file_path="/b.py"),
    ]
    arrival = list(enumerate(tools))
    random.Random(11).shuffle(arrival)
    for index, tool in arrival:
        aggregator.add_entry(_assistant(f"a{index}", NOW + timedelta(seconds=index), tool))

    session = aggregator.get("s1")

    assert session is not None
    assert [tool for change in session.changes for tool in change.tools] == tools


def test_custom_command_target(clock: Callable[[], datetime]) -> None:
    aggregator = SessionAggregator(command_extractor=CommandExtractor("npm"), clock=clock)
    aggregator.add_entry(
        _assistant("a1", NOW, ToolUse(name="Bash", command="npm ci && dotnet build"))
    )

    session = aggregator.get("s1")

    assert session is not None
    assert session.command_stats.command_counts == {"ci": 1}


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/home/dev/shop", "shop"),
        ("/home/dev/shop/", "shop"),
        (r"C:\Users\dev\Shop", "Shop"),
        ("", None),
        (None, None),
    ],
)
def test_project_name_from_path(path: str | None, expected: str | None) -> None:
    assert project_name_from_path(path) == expected


def test_concurrent_writers_on_one_session(aggregator: SessionAggregator) -> None:
    threads_count = 8
    per_thread = 250
    barrier = threading.Barrier(threads_count)

    def _write(worker: int) -> None:
        barrier.wait()
        for index in range(per_thread):
            stamp = NOW - timedelta(seconds=worker * per_thread + index)
            aggregator.add_unique(_user(f"{worker}-{index}", stamp))
            aggregator.add_unique(_user("shared", NOW))

    threads = [threading.Thread(target=_write, args=(worker,)) for worker in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    entries = aggregator.get_entries("s1")
    session = aggregator.get("s1")
    assert len(entries) == threads_count * per_thread + 1
    assert len({entry.id for entry in entries}) == len(entries)
    assert session is not None
    assert session.start_time == min(entry.timestamp for entry in entries)
    assert session.last_activity == NOW


def test_concurrent_writers_on_many_sessions(aggregator: SessionAggregator) -> None:
    def _write(worker: int) -> None:
        for index in range(100):
            aggregator.add_entry(_user(f"{worker}-{index}", NOW, session_id=f"s{index % 10}"))

    threads = [threading.Thread(target=_write, args=(worker,)) for worker in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(aggregator) == 10
    assert sum(len(aggregator.get_entries(f"s{index}")) for index in range(10)) == 600


def test_abandoned_stream_leaves_consistent_state(aggregator: SessionAggregator) -> None:
    def _stream() -> Iterator[Entry]:
        yield _user("u1", NOW - timedelta(minutes=1))
        yield _user("u2", NOW)
        raise AssertionError("stream was not abandoned")

    stream = _stream()
    aggregator.add_unique(next(stream))
    aggregator.add_unique(next(stream))
    stream.close()

    session = aggregator.get("s1")
    assert session is not None
    assert session.user_message_count == 2
    assert session.last_activity == NOW


def test_load_from_providers(claude_projects: Path, clock: Callable[[], datetime]) -> None:
    aggregator = SessionAggregator(clock=clock)
    provider = ClaudeCodeProvider(base_path=claude_projects)

    added = aggregator.load_from_providers([provider, provider], max_workers=2)

    session = aggregator.get("sess-demo")
    assert added == 4
    assert session is not None
    assert session.project_name == "demo"
    assert session.is_active
    assert session.total_input_tokens == 150
    assert session.total_cache_read_tokens == 5
    assert [change.change_type.value for change in session.changes] == ["explore", "execute"]
    assert session.command_stats.command_counts == {"build": 1}


class _BrokenProvider(LogProvider):
    def __init__(self, base_path: Path):
        self._base_path = base_path

    @property
    def source_name(self) -> str:
        return "broken"

    @property
    def base_path(self) -> Path:
        return self._base_path

    def discover_sources(self, since: datetime | None = None) -> list[Path]:
        return [self._base_path / "unreadable.jsonl"]

    def create_line_parser(self) -> LineParser:
        return lambda line: None

    def stream_entries(self, source: Path) -> Iterator[Entry]:
        raise PermissionError(f"denied: {source}")
        yield  # pragma: no cover


def test_load_from_providers_skips_unreadable_sources(
    claude_projects: Path,
    tmp_path: Path,
    clock: Callable[[], datetime],
    caplog: pytest.LogCaptureFixture,
) -> None:
    aggregator = SessionAggregator(clock=clock)
    providers = [_BrokenProvider(tmp_path), ClaudeCodeProvider(base_path=claude_projects)]

    with caplog.at_level(logging.WARNING, logger="agent_logs"):
        added = aggregator.load_from_providers(providers)

    assert added == 4
    assert aggregator.session_ids() == ["sess-demo"]
    assert "unreadable.jsonl" in caplog.text


def test_load_from_providers_without_sources(tmp_path: Path) -> None:
    aggregator = SessionAggregator()

    assert aggregator.load_from_providers([ClaudeCodeProvider(base_path=tmp_path / "x")]) == 0
    assert aggregator.list_all() == []


def test_oversized_line_does_not_abort_load(
    tmp_path: Path, write_jsonl, clock: Callable[[], datetime]
) -> None:
    def _line(uuid: str) -> dict:
        return {
            "type": "user",
            "uuid": uuid,
            "sessionId": "s1",
            "timestamp": "2025-03-14T11:59:00Z",
            "message": {"content": "hi"},
        }

    write_jsonl(
        tmp_path / "-work" / "s1.jsonl",
        [_line("u1"), '{"type": "user", "n": ' + "1" * 5000 + "}", _line("u2")],
    )
    aggregator = SessionAggregator(clock=clock)

    added = aggregator.load_from_providers([ClaudeCodeProvider(base_path=tmp_path)])

    assert added == 2
    assert [entry.id for entry in aggregator.get_entries("s1")] == ["u1", "u2"]


class _UndiscoverableProvider(_BrokenProvider):
    @property
    def source_name(self) -> str:
        return "undiscoverable"

    def discover_sources(self, since: datetime | None = None) -> list[Path]:
        raise PermissionError(f"denied: {self._base_path}")


def test_load_from_providers_skips_failed_discovery(
    claude_projects: Path,
    tmp_path: Path,
    clock: Callable[[], datetime],
    caplog: pytest.LogCaptureFixture,
) -> None:
    aggregator = SessionAggregator(clock=clock)
    providers = [_UndiscoverableProvider(tmp_path), ClaudeCodeProvider(base_path=claude_projects)]

    with caplog.at_level(logging.WARNING, logger="agent_logs"):
        added = aggregator.load_from_providers(providers)

    assert added == 4
    assert aggregator.session_ids() == ["sess-demo"]
    assert "undiscoverable" in caplog.text
