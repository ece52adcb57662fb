from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from agent_logs.core.commands import CommandExtractor
from agent_logs.core.grouper import ChangeGrouper, ToolCategory, tool_category
from agent_logs.ingest.base import LogProvider
from agent_logs.models import AssistantEntry, Entry, Session, UserEntry, utcnow

logger = logging.getLogger(__name__)

DEFAULT_ACTIVE_THRESHOLD = timedelta(minutes=5)
_DEDUP_STRIPES = 64


@dataclass
class _SessionState:
    session_id: str
    lock: threading.Lock = field(default_factory=threading.Lock)
    entries: list[Entry] = field(default_factory=list)
    start_time: datetime | None = None
    last_activity: datetime | None = None

    def append(self, entry: Entry) -> None:
        with self.lock:
            self.entries.append(entry)
            timestamp = entry.timestamp
            if self.start_time is None or timestamp < self.start_time:
                self.start_time = timestamp
            if self.last_activity is None or timestamp > self.last_activity:
                self.last_activity = timestamp

    def snapshot(self) -> tuple[list[Entry], datetime | None, datetime | None]:
        with self.lock:
            return list(self.entries), self.start_time, self.last_activity


class _DedupIndex:
    """Set of seen entry ids, striped so unrelated ids rarely share a lock."""

    def __init__(self, stripes: int = _DEDUP_STRIPES) -> None:
        self._locks = [threading.Lock() for _ in range(stripes)]
        self._seen: list[set[str]] = [set() for _ in range(stripes)]

    def add(self, entry_id: str) -> bool:
        index = hash(entry_id) % len(self._locks)
        with self._locks[index]:
            seen = self._seen[index]
            if entry_id in seen:
                return False
            seen.add(entry_id)
            return True


def project_name_from_path(project_path: str | None) -> str | None:
    if not project_path:
        return None
    segments = [segment for segment in re.split(r"[\\/]", project_path) if segment]
    return segments[-1] if segments else None


class SessionAggregator:
    """Collects entries per session and projects them into ``Session`` snapshots.

    Writers only contend on the lock of the session they append to. Queries
    copy a session's buffer under its lock and do the grouping, command
    extraction and counting afterwards, so a slow reader never holds up
    ingestion.

    ``add_entry`` appends unconditionally; ``add_unique`` and the
    ``load_from_*`` helpers skip entry ids that were already loaded through
    them.
    """

    def __init__(
        self,
        active_threshold: timedelta = DEFAULT_ACTIVE_THRESHOLD,
        *,
        grouper: ChangeGrouper | None = None,
        command_extractor: CommandExtractor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.active_threshold = active_threshold
        self.grouper = grouper or ChangeGrouper()
        self.command_extractor = command_extractor or CommandExtractor()
        self._clock = clock or utcnow
        self._sessions: dict[str, _SessionState] = {}
        self._sessions_lock = threading.Lock()
        self._dedup = _DedupIndex()

    def __len__(self) -> int:
        return len(self._sessions)

    def session_ids(self) -> list[str]:
        with self._sessions_lock:
            return list(self._sessions)

    def _state_for(self, session_id: str) -> _SessionState:
        state = self._sessions.get(session_id)
        if state is not None:
            return state
        with self._sessions_lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = _SessionState(session_id=session_id)
                self._sessions[session_id] = state
            return state

    def add_entry(self, entry: Entry) -> None:
        self._state_for(entry.session_id).append(entry)

    def add_unique(self, entry: Entry) -> bool:
        """Append ``entry`` unless its id was already loaded; return whether it was added."""
        if not self._dedup.add(entry.id):
            return False
        self.add_entry(entry)
        return True

    def load_from_source(self, stream: Iterable[Entry]) -> int:
        added = 0
        for entry in stream:
            if self.add_unique(entry):
                added += 1
        return added

    def load_from_providers(
        self,
        providers: Sequence[LogProvider],
        max_workers: int | None = None,
    ) -> int:
        """Drain every source of every provider, one worker thread per source."""
        jobs: list[tuple[LogProvider, Path]] = []
        for provider in providers:
            try:
                sources = provider.discover_sources()
            except OSError as exc:
                logger.warning("Skipping %s sources: %s", provider.source_name, exc)
                continue
            jobs.extend((provider, source) for source in sources)
        if not jobs:
            logger.info("No log sources found")
            return 0

        added = 0
        with ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="agent-logs-load"
        ) as executor:
            futures = {
                executor.submit(self.load_from_source, provider.stream_entries(source)): source
                for provider, source in jobs
            }
            for future in as_completed(futures):
                source = futures[future]
                try:
                    added += future.result()
                except OSError as exc:
                    logger.warning("Skipping unreadable source %s: %s", source, exc)

        logger.info(
            "Loaded %d entries from %d sources into %d sessions", added, len(jobs), len(self)
        )
        return added

    def list_all(self) -> list[Session]:
        with self._sessions_lock:
            states = list(self._sessions.values())
        sessions = [
            session for state in states if (session := self._build_session(state)) is not None
        ]
        sessions.sort(key=lambda session: session.last_activity, reverse=True)
        return sessions

    def list_active(self, threshold: timedelta | None = None) -> list[Session]:
        threshold = self.active_threshold if threshold is None else threshold
        now = self._clock()
        return [session for session in self.list_all() if now - session.last_activity <= threshold]

    def list_recent(self, n: int = 20) -> list[Session]:
        return self.list_all()[: max(n, 0)]

    def get(self, session_id: str) -> Session | None:
        state = self._sessions.get(session_id)
        if state is None:
            return None
        return self._build_session(state)

    def get_entries(self, session_id: str) -> list[Entry]:
        state = self._sessions.get(session_id)
        if state is None:
            return []
        entries, _, _ = state.snapshot()
        entries.sort(key=lambda entry: entry.timestamp)
        return entries

    def _build_session(self, state: _SessionState) -> Session | None:
        entries, start_time, last_activity = state.snapshot()
        if not entries or start_time is None or last_activity is None:
            return None
        entries.sort(key=lambda entry: entry.timestamp)

        user_messages = 0
        assistant_messages = 0
        tool_calls = 0
        input_tokens = output_tokens = cache_creation = cache_read = 0
        commands = []
        for entry in entries:
            if isinstance(entry, UserEntry):
                user_messages += 1
            elif isinstance(entry, AssistantEntry):
                assistant_messages += 1
                tool_calls += len(entry.tool_uses)
                if entry.usage is not None:
                    input_tokens += entry.usage.input_tokens
                    output_tokens += entry.usage.output_tokens
                    cache_creation += entry.usage.cache_creation_input_tokens
                    cache_read += entry.usage.cache_read_input_tokens
                for tool in entry.tool_uses:
                    if tool_category(tool.name) is ToolCategory.EXECUTE:
                        commands.extend(
                            self.command_extractor.extract_all(tool.command, entry.timestamp)
                        )

        project_path = next((entry.project_path for entry in entries if entry.project_path), None)
        return Session(
            id=state.session_id,
            project_path=project_path,
            project_name=project_name_from_path(project_path),
            start_time=start_time,
            last_activity=last_activity,
            is_active=self._clock() - last_activity <= self.active_threshold,
            user_message_count=user_messages,
            assistant_message_count=assistant_messages,
            tool_call_count=tool_calls,
            changes=tuple(self.grouper.group(entries)),
            total_input_tokens=input_tokens,
            total_output_tokens=output_tokens,
            total_cache_creation_tokens=cache_creation,
            total_cache_read_tokens=cache_read,
            commands=tuple(commands),
            command_stats=CommandExtractor.aggregate(commands),
        )
