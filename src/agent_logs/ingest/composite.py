from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

from agent_logs.ingest.base import LineParser, LogProvider, ParseResult
from agent_logs.models import Entry


class CompositeProvider(LogProvider):
    """Present several providers as one; the first is the primary provider."""

    def __init__(self, *providers: LogProvider):
        if not providers:
            raise ValueError("At least one provider is required")
        self.providers = providers

    @property
    def source_name(self) -> str:
        return " + ".join(provider.source_name for provider in self.providers)

    @property
    def base_path(self) -> Path:
        return self.providers[0].base_path

    def discover_sources(self, since: datetime | None = None) -> list[Path]:
        sources: list[Path] = []
        for provider in self.providers:
            sources.extend(provider.discover_sources(since))
        return sources

    def provider_for(self, source: Path) -> LogProvider:
        """Return the provider whose base path contains ``source``."""
        for provider in self.providers:
            if source.is_relative_to(provider.base_path):
                return provider
        return self.providers[0]

    def create_line_parser(self) -> LineParser:
        return self.providers[0].create_line_parser()

    def create_line_parser_for(self, source: Path) -> LineParser:
        return self.provider_for(source).create_line_parser()

    def session_id_for(self, source: Path) -> str:
        return self.provider_for(source).session_id_for(source)

    def stream_entries(self, source: Path) -> Iterator[Entry]:
        return self.provider_for(source).stream_entries(source)

    def parse_file(self, source: Path) -> ParseResult:
        return self.provider_for(source).parse_file(source)
