from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from agent_logs.models import Entry

LineParser = Callable[[str], Entry | None]

logger = logging.getLogger(__name__)


class MalformedRecordError(ValueError):
    """A log line that is not JSON or lacks a required field."""


class ParseError(BaseModel):
    """Diagnostic for one skipped line of a log file."""

    line_number: int
    message: str
    raw_line: str | None = None

    model_config = ConfigDict(frozen=True)


class ParseResult(BaseModel):
    entries: list[Entry] = Field(default_factory=list)
    errors: list[ParseError] = Field(default_factory=list)


class LiveSessionInfo(BaseModel):
    """A session currently visible to a live provider."""

    id: str
    command: str
    working_directory: str | None = None
    state: str
    created: datetime
    exit_code: int | None = None


def normalize_dt(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def modified_since(path: Path, since: datetime) -> bool:
    """Return whether ``path`` was written at or after ``since``.

    A file that vanished or cannot be stat-ed counts as not modified.
    """
    try:
        mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
    except OSError as exc:
        logger.debug("Cannot stat %s: %s", path, exc)
        return False
    return mtime >= normalize_dt(since)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch seconds/milliseconds into aware UTC datetimes."""
    if value is None:
        return None

    try:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            timestamp = float(value)
            if timestamp > 1e12:
                timestamp = timestamp / 1000
            return datetime.fromtimestamp(timestamp, tz=UTC)
        if isinstance(value, str) and value.strip():
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return normalize_dt(parsed)
    except (OSError, OverflowError, TypeError, ValueError):
        return None

    return None


def truncate_line(line: str, limit: int = 200) -> str:
    return line if len(line) <= limit else f"{line[: limit - 3]}..."


class LogProvider(ABC):
    """Abstract base for discovering log files and streaming normalized entries."""

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Identifier for this provider (e.g. "claude-code", "copilot")."""

    @property
    @abstractmethod
    def base_path(self) -> Path:
        """Root directory the provider discovers sources under."""

    @abstractmethod
    def discover_sources(self, since: datetime | None = None) -> list[Path]:
        """Find log files, optionally only those modified at or after ``since``."""

    @abstractmethod
    def create_line_parser(self) -> LineParser:
        """Return a fresh stateful parser turning one raw line into an Entry.

        The parser returns None for blank lines and ignored record types and
        raises MalformedRecordError for lines it cannot normalize.
        """

    def create_line_parser_for(self, source: Path) -> LineParser:
        return self.create_line_parser()

    def stream_entries(self, source: Path) -> Iterator[Entry]:
        """Lazily yield entries from one source, skipping bad lines.

        A missing or unreadable file yields nothing; closing the iterator early
        is always safe.
        """
        parse_line = self.create_line_parser_for(source)
        for _, line in iter_lines(source):
            try:
                entry = parse_line(line)
            except MalformedRecordError as exc:
                logger.debug("Skipping malformed record in %s: %s", source, exc)
                continue
            if entry is not None:
                yield entry

    def session_id_for(self, source: Path) -> str:
        """Best-effort session id for a source without parsing it."""
        return source.stem

    def parse_file(self, source: Path) -> ParseResult:
        """Parse a whole file, keeping a diagnostic for every skipped line."""
        parse_line = self.create_line_parser_for(source)
        result = ParseResult()
        for line_number, line in iter_lines(source):
            try:
                entry = parse_line(line)
            except MalformedRecordError as exc:
                result.errors.append(
                    ParseError(
                        line_number=line_number, message=str(exc), raw_line=truncate_line(line)
                    )
                )
                continue
            if entry is not None:
                result.entries.append(entry)
        return result


class LiveLogProvider(ABC):
    """Contract for providers that stream entries of running sessions."""

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Identifier for this live provider."""

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying transport can currently be used."""

    @abstractmethod
    def list_sessions(self) -> list[LiveSessionInfo]:
        """List sessions that are currently live."""

    @abstractmethod
    def watch_session(
        self,
        session_id: str,
        stop: threading.Event | None = None,
    ) -> Iterator[Entry]:
        """Yield entries of one session as they are written until ``stop`` is set."""

    @abstractmethod
    def get_buffered_entries(self, session_id: str) -> list[Entry]:
        """Return the entries already written for a session."""


def iter_lines(source: Path) -> Iterator[tuple[int, str]]:
    """Yield ``(line_number, line)`` for the non-blank lines of a JSONL file."""
    if not source.exists():
        return

    try:
        with source.open(encoding="utf-8", errors="replace") as file:
            for line_number, raw_line in enumerate(file, start=1):
                line = raw_line.strip()
                if line:
                    yield line_number, line
    except OSError as exc:
        logger.warning("Stopped reading %s: %s", source, exc)
