"""Find invocations of a nested CLI (``dotnet`` by default) inside shell commands.

Compound lines are split on ``&&``, ``||``, ``;``, ``|`` and newlines. An
invocation may carry a path prefix (``/usr/share/dotnet/dotnet build``) and
runs until the next separator. Two invocations on one line with no separator
between them are read as one: the second becomes part of the first's
arguments.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable
from datetime import datetime

from agent_logs.models import EmbeddedCommand, EmbeddedCommandStats

DEFAULT_TARGET = "dotnet"

_SEPARATOR_CHARS = "&|;\n \t"


def _build_pattern(target: str) -> re.Pattern[str]:
    name = re.escape(target)
    return re.compile(
        r"(?:^|&&|\|\||;|\||\n)[ \t]*"  # segment start
        r"(?:[\w.~:\\/-]*[\\/])?"  # optional path prefix
        rf"{name}(?:-\w+)?(?:\.exe)?(?=\s|$)"
        r"[^&|;\n]*",
        re.IGNORECASE,
    )


class CommandExtractor:
    """Extract and count invocations of one target CLI."""

    def __init__(self, target: str = DEFAULT_TARGET):
        normalized = target.strip().lower()
        if not normalized:
            raise ValueError("Command extractor target must not be empty")
        self.target = normalized
        self._pattern = _build_pattern(normalized)

    def extract(self, command: str | None, timestamp: datetime) -> EmbeddedCommand | None:
        """Return the first invocation in ``command``, if any."""
        found = self.extract_all(command, timestamp)
        return found[0] if found else None

    def extract_all(self, command: str | None, timestamp: datetime) -> list[EmbeddedCommand]:
        if not command or not command.strip():
            return []

        commands: list[EmbeddedCommand] = []
        for match in self._pattern.finditer(command):
            parsed = self._parse_invocation(match.group(0), timestamp)
            if parsed is not None:
                commands.append(parsed)
        return commands

    def _parse_invocation(self, text: str, timestamp: datetime) -> EmbeddedCommand | None:
        full_command = text.strip().lstrip(_SEPARATOR_CHARS)
        parts = full_command.split()
        if not parts:
            return None

        executable = re.split(r"[\\/]", parts[0])[-1].lower()
        if executable.endswith(".exe"):
            executable = executable[:-4]

        # Standalone tools such as "dotnet-ef" are their own command.
        if executable.startswith(f"{self.target}-"):
            return EmbeddedCommand(
                command=executable,
                full_command=full_command,
                arguments=" ".join(parts[1:]) or None,
                timestamp=timestamp,
            )

        if len(parts) < 2:
            return EmbeddedCommand(
                command=self.target,
                full_command=full_command,
                arguments=None,
                timestamp=timestamp,
            )

        # A leading flag ("dotnet --info") stands in for the subcommand.
        return EmbeddedCommand(
            command=parts[1].lower(),
            full_command=full_command,
            arguments=" ".join(parts[2:]) or None,
            timestamp=timestamp,
        )

    @staticmethod
    def aggregate(commands: Iterable[EmbeddedCommand]) -> EmbeddedCommandStats:
        counts: Counter[str] = Counter()
        for command in commands:
            counts[command.command.lower()] += 1
        return EmbeddedCommandStats(
            command_counts=dict(counts), total_commands=sum(counts.values())
        )
