from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from agent_logs.ingest.base import (
    LineParser,
    LiveLogProvider,
    LiveSessionInfo,
    LogProvider,
    MalformedRecordError,
)
from agent_logs.models import Entry, utcnow

logger = logging.getLogger(__name__)


@dataclass
class _FileState:
    offset: int
    inode: int | None
    buffer: bytes
    parser: LineParser


class LogWatcher:
    """Poll a provider's JSONL files and parse lines appended since the last poll."""

    def __init__(
        self,
        provider: LogProvider,
        *,
        sources: Sequence[Path] | None = None,
        poll_interval: float = 0.5,
        start_at_end: bool = True,
    ) -> None:
        self.provider = provider
        self._sources = list(sources) if sources is not None else None
        self.poll_interval = max(poll_interval, 0.05)
        self.start_at_end = start_at_end
        self._state: dict[Path, _FileState] = {}

    def poll(self) -> list[Entry]:
        paths = self._sources if self._sources is not None else self.provider.discover_sources()
        active = set(paths)
        for path in list(self._state.keys()):
            if path not in active:
                self._state.pop(path, None)

        entries: list[Entry] = []
        for path in paths:
            entries.extend(self._read_new_entries(path))
        return entries

    def watch(
        self,
        *,
        on_entry: Callable[[Entry], None] | None = None,
        max_events: int | None = None,
        max_seconds: float | None = None,
        stop: threading.Event | None = None,
    ) -> int:
        start = time.monotonic()
        seen = 0

        while stop is None or not stop.is_set():
            entries = self.poll()
            if entries:
                for entry in entries:
                    if on_entry is not None:
                        on_entry(entry)
                seen += len(entries)
                if max_events is not None and seen >= max_events:
                    break

            if max_seconds is not None and (time.monotonic() - start) >= max_seconds:
                break
            if stop is not None:
                stop.wait(self.poll_interval)
            else:
                time.sleep(self.poll_interval)

        return seen

    def _new_state(self, path: Path, size: int, inode: int | None) -> _FileState:
        state = _FileState(
            offset=0, inode=inode, buffer=b"", parser=self.provider.create_line_parser_for(path)
        )
        if self.start_at_end and size:
            # Replay existing lines through the parser without emitting them so
            # stateful parsers (e.g. inherited session ids) are primed.
            self._consume(path, state)
        return state

    def _read_new_entries(self, path: Path) -> list[Entry]:
        try:
            stat = path.stat()
        except OSError:
            self._state.pop(path, None)
            return []

        inode = getattr(stat, "st_ino", None)
        state = self._state.get(path)
        if state is None:
            state = self._new_state(path, stat.st_size, inode)
            self._state[path] = state
            if self.start_at_end:
                return []
        elif (inode is not None and state.inode is not None and inode != state.inode) or (
            stat.st_size < state.offset
        ):
            logger.debug("Log file %s was replaced or truncated, reading from the start", path)
            state = _FileState(
                offset=0, inode=inode, buffer=b"", parser=self.provider.create_line_parser_for(path)
            )
            self._state[path] = state

        state.inode = inode
        if stat.st_size == state.offset:
            return []
        return self._consume(path, state)

    def _consume(self, path: Path, state: _FileState) -> list[Entry]:
        try:
            with path.open("rb") as handle:
                handle.seek(state.offset)
                chunk = handle.read()
                state.offset = handle.tell()
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return []

        data = state.buffer + chunk
        if not data:
            return []

        lines = data.split(b"\n")
        # Keep a partially written last line for the next poll.
        state.buffer = lines.pop()

        entries: list[Entry] = []
        for raw in lines:
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            try:
                entry = state.parser(line)
            except MalformedRecordError as exc:
                logger.debug("Skipping malformed record in %s: %s", path, exc)
                continue
            if entry is not None:
                entries.append(entry)
        return entries


class FileLiveProvider(LiveLogProvider):
    """Live view over a file-based provider: a session is live while its file keeps changing."""

    def __init__(
        self,
        provider: LogProvider,
        *,
        active_window: timedelta = timedelta(minutes=5),
        poll_interval: float = 0.5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.provider = provider
        self.active_window = active_window
        self.poll_interval = poll_interval
        self._clock = clock or utcnow

    @property
    def source_name(self) -> str:
        return f"{self.provider.source_name} (live)"

    @property
    def is_available(self) -> bool:
        return self.provider.base_path.is_dir()

    def list_sessions(self) -> list[LiveSessionInfo]:
        sessions: list[LiveSessionInfo] = []
        for source in self.provider.discover_sources(since=self._clock() - self.active_window):
            try:
                stat = source.stat()
            except OSError:
                continue
            sessions.append(
                LiveSessionInfo(
                    id=self.provider.session_id_for(source),
                    command=self.provider.source_name,
                    state="running",
                    created=datetime.fromtimestamp(stat.st_ctime, tz=UTC),
                )
            )
        return sessions

    def _find_source(self, session_id: str) -> Path | None:
        for source in self.provider.discover_sources():
            if self.provider.session_id_for(source) == session_id:
                return source
        return None

    def watch_session(
        self,
        session_id: str,
        stop: threading.Event | None = None,
    ) -> Iterator[Entry]:
        source = self._find_source(session_id)
        if source is None:
            return

        watcher = LogWatcher(
            self.provider,
            sources=[source],
            poll_interval=self.poll_interval,
            start_at_end=True,
        )
        stop = stop or threading.Event()
        watcher.poll()
        while not stop.is_set():
            yield from watcher.poll()
            stop.wait(watcher.poll_interval)

    def get_buffered_entries(self, session_id: str) -> list[Entry]:
        source = self._find_source(session_id)
        if source is None:
            return []
        return list(self.provider.stream_entries(source))
