"""Registry of the assistant log sources agent-logs knows how to read."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SourceDefinition:
    name: str
    display_name: str
    aliases: tuple[str, ...] = ()
    # ProvidersConfig field holding a directory override for this source.
    config_attr: str | None = None
    # Where the assistant writes its logs, relative to the home directory.
    home_layout: tuple[str, ...] = ()


SOURCE_DEFINITIONS: tuple[SourceDefinition, ...] = (
    SourceDefinition(
        name="claude-code",
        display_name="Claude Code",
        aliases=("claudecode", "claude"),
        config_attr="claude_dir",
        home_layout=(".claude", "projects"),
    ),
    SourceDefinition(
        name="copilot",
        display_name="GitHub Copilot",
        aliases=("github-copilot", "copilot-cli"),
        config_attr="copilot_dir",
        home_layout=(".copilot", "session-state"),
    ),
)

SOURCE_BY_NAME: dict[str, SourceDefinition] = {item.name: item for item in SOURCE_DEFINITIONS}
VALID_SOURCE_NAMES: tuple[str, ...] = tuple(SOURCE_BY_NAME)


def _canonical(value: str) -> str:
    return value.strip().lower().replace("_", "-")


SOURCE_NAME_ALIASES: dict[str, str] = {
    _canonical(alias): source.name
    for source in SOURCE_DEFINITIONS
    for alias in (source.name, *source.aliases)
}


def normalize_source_name(value: str) -> str:
    """Map an alias such as ``claude_code`` to its source name.

    Unknown names are returned canonicalized so callers can report them.
    """
    canonical = _canonical(value)
    return SOURCE_NAME_ALIASES.get(canonical, canonical)


def display_name(value: str) -> str:
    source = SOURCE_BY_NAME.get(normalize_source_name(value))
    return source.display_name if source is not None else value
