from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import TypeVar, assert_never

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.theme import Theme

from agent_logs.core.aggregator import SessionAggregator
from agent_logs.core.commands import CommandExtractor
from agent_logs.core.config import AgentLogsConfig, ConfigError, load_config
from agent_logs.core.grouper import ChangeGrouper
from agent_logs.core.log import configure_logging
from agent_logs.core.stats import compute_daily_stats, compute_stats
from agent_logs.ingest import CompositeProvider, LogProvider, LogWatcher, get_provider
from agent_logs.ingest.sources import SOURCE_BY_NAME, display_name
from agent_logs.models import (
    AssistantEntry,
    Entry,
    MetadataEntry,
    Session,
    SummaryEntry,
    SystemEntry,
    UserEntry,
)

app = typer.Typer(help="Agent Logs - Sessions and changes from AI coding-assistant logs")

console = Console(
    theme=Theme(
        {
            "error": "bright_red",
            "success": "bright_green",
            "warning": "bright_yellow",
            "dim": "dim white",
            "accent": "cyan",
            "table_header": "cyan",
        }
    )
)

T = TypeVar("T")

CONFIG_OPTION_HELP = "Config file (default $AGENT_LOGS_CONFIG or ~/.config/agent-logs/config.yaml)"


def run_with_spinner(description: str, action: Callable[[], T]) -> T:
    """Run a blocking action with a transient spinner."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        return action()


def _load_settings(config_path: Path | None) -> AgentLogsConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        console.print(f"[error]{escape(str(exc))}[/error]")
        raise typer.Exit(1) from None
    configure_logging(config.logging.level)
    return config


def build_providers(config: AgentLogsConfig) -> list[LogProvider]:
    providers: list[LogProvider] = []
    for name in config.providers.enabled:
        definition = SOURCE_BY_NAME[name]
        kwargs: dict[str, Path | None] = {}
        if definition.config_attr:
            kwargs[definition.config_attr] = getattr(config.providers, definition.config_attr)
        providers.append(get_provider(name, **kwargs))
    return providers


def build_aggregator(config: AgentLogsConfig) -> SessionAggregator:
    return SessionAggregator(
        config.sessions.active_threshold,
        grouper=ChangeGrouper(config.sessions.change_gap),
        command_extractor=CommandExtractor(config.commands.target),
    )


def _load_sessions(config: AgentLogsConfig) -> SessionAggregator:
    aggregator = build_aggregator(config)
    providers = build_providers(config)
    run_with_spinner(
        "Reading session logs...",
        lambda: aggregator.load_from_providers(providers),
    )
    return aggregator


def _format_time(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def _format_duration(value: timedelta) -> str:
    minutes, seconds = divmod(int(value.total_seconds()), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


def _session_table(sessions: list[Session], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Session", style="table_header", overflow="fold")
    table.add_column("Project")
    table.add_column("Last activity")
    table.add_column("Duration", justify="right")
    table.add_column("Messages", justify="right")
    table.add_column("Tools", justify="right")
    table.add_column("Changes", justify="right")
    table.add_column("Status")

    for session in sessions:
        status = "[success]active[/success]" if session.is_active else "[dim]idle[/dim]"
        table.add_row(
            escape(session.id),
            escape(session.project_name or "-"),
            _format_time(session.last_activity),
            _format_duration(session.duration),
            str(session.user_message_count + session.assistant_message_count),
            str(session.tool_call_count),
            str(len(session.changes)),
            status,
        )
    return table


@app.command()
def sessions(
    active: bool = typer.Option(False, "--active", "-a", help="Only sessions active recently"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum sessions to show"),
    config_path: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """List sessions, most recently active first."""
    config = _load_settings(config_path)
    aggregator = _load_sessions(config)

    found = aggregator.list_active() if active else aggregator.list_all()
    if not found:
        console.print("[dim]No sessions found.[/dim]")
        return

    title = "Active Sessions" if active else "Sessions"
    console.print(_session_table(found[:limit], title))
    if len(found) > limit:
        console.print(f"[dim]Showing {limit} of {len(found)} sessions.[/dim]")


@app.command()
def show(
    session_id: str = typer.Argument(..., help="Session id"),
    config_path: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Show one session's changes and embedded commands."""
    config = _load_settings(config_path)
    aggregator = _load_sessions(config)

    session = aggregator.get(session_id)
    if session is None:
        console.print(f"[error]Session not found: {escape(session_id)}[/error]")
        raise typer.Exit(1)

    console.print(f"[accent]Session[/accent] {escape(session.id)}")
    console.print(f"  Project:  {escape(session.project_path or '-')}")
    console.print(f"  Started:  {_format_time(session.start_time)}")
    console.print(
        f"  Activity: {_format_time(session.last_activity)} ({_format_duration(session.duration)})"
    )
    console.print(
        f"  Messages: {session.user_message_count} user, "
        f"{session.assistant_message_count} assistant"
    )
    console.print(
        "  Tokens:   "
        f"{session.total_input_tokens:,} in, {session.total_output_tokens:,} out, "
        f"{session.total_cache_read_tokens:,} cache read, "
        f"{session.total_cache_creation_tokens:,} cache write"
    )

    changes = Table(title="Changes")
    changes.add_column("Time", style="table_header")
    changes.add_column("Type")
    changes.add_column("Description", overflow="fold")
    changes.add_column("Tools", justify="right")
    changes.add_column("Files", overflow="fold")
    for change in session.changes:
        changes.add_row(
            change.start_time.astimezone().strftime("%H:%M:%S"),
            change.change_type.value,
            escape(change.description),
            str(len(change.tools)),
            escape(", ".join(change.affected_files) or "-"),
        )
    console.print(changes)

    command_stats = session.command_stats
    if command_stats.total_commands:
        commands = Table(title=f"{config.commands.target} commands")
        commands.add_column("Command", style="table_header")
        commands.add_column("Count", justify="right")
        ranked = sorted(command_stats.command_counts.items(), key=lambda item: (-item[1], item[0]))
        for name, count in ranked:
            commands.add_row(escape(name), str(count))
        console.print(commands)


@app.command()
def stats(
    days: int = typer.Option(7, "--days", "-d", min=1, help="Days of daily breakdown"),
    config_path: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Show totals across all sessions."""
    config = _load_settings(config_path)
    aggregator = _load_sessions(config)
    all_sessions = aggregator.list_all()
    totals = compute_stats(all_sessions)

    summary = Table(title="Totals")
    summary.add_column("Metric", style="table_header")
    summary.add_column("Value", justify="right")
    summary.add_row("Sessions", f"{totals.total_sessions} ({totals.active_sessions} active)")
    summary.add_row("User messages", f"{totals.total_user_messages:,}")
    summary.add_row("Assistant messages", f"{totals.total_assistant_messages:,}")
    summary.add_row("Tool calls", f"{totals.total_tool_calls:,}")
    summary.add_row("Input tokens", f"{totals.total_input_tokens:,}")
    summary.add_row("Output tokens", f"{totals.total_output_tokens:,}")
    console.print(summary)

    if totals.tool_usage_counts:
        tools = Table(title="Tool usage")
        tools.add_column("Tool", style="table_header")
        tools.add_column("Calls", justify="right")
        for name, count in list(totals.tool_usage_counts.items())[:10]:
            tools.add_row(escape(name), str(count))
        console.print(tools)

    daily = Table(title=f"Last {days} days")
    daily.add_column("Day", style="table_header")
    daily.add_column("Sessions", justify="right")
    daily.add_column("Messages", justify="right")
    daily.add_column("Tool calls", justify="right")
    daily.add_column("Tokens", justify="right")
    for day in compute_daily_stats(all_sessions, days=days):
        daily.add_row(
            day.day.isoformat(),
            str(day.session_count),
            str(day.user_messages + day.assistant_messages),
            str(day.tool_calls),
            f"{day.input_tokens + day.output_tokens:,}",
        )
    console.print(daily)


def _describe_entry(entry: Entry) -> str:
    if isinstance(entry, UserEntry):
        return f"user: {entry.content[:80]}"
    if isinstance(entry, AssistantEntry):
        if entry.tool_uses:
            return "assistant: " + ", ".join(tool.name for tool in entry.tool_uses)
        return f"assistant: {(entry.text_content or '')[:80]}"
    if isinstance(entry, SystemEntry):
        return f"system: {entry.content[:80]}"
    if isinstance(entry, SummaryEntry):
        return f"summary: {entry.summary[:80]}"
    if isinstance(entry, MetadataEntry):
        return f"metadata: {entry.entry_type}"
    assert_never(entry)


@app.command()
def watch(
    seconds: float | None = typer.Option(
        None,
        "--seconds",
        "-s",
        min=0.0,
        help="Stop after this many seconds (default: until Ctrl-C)",
    ),
    interval: float = typer.Option(0.5, "--interval", help="Polling interval in seconds"),
    config_path: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Print entries as they are appended to session logs."""
    config = _load_settings(config_path)
    providers = build_providers(config)
    if not providers:
        console.print("[warning]No providers enabled.[/warning]")
        raise typer.Exit(1)

    aggregator = build_aggregator(config)
    watcher = LogWatcher(CompositeProvider(*providers), poll_interval=interval, start_at_end=True)
    names = ", ".join(display_name(provider.source_name) for provider in providers)
    console.print(f"[dim]Watching {escape(names)} logs. Press Ctrl-C to stop.[/dim]")

    def _on_entry(entry: Entry) -> None:
        if not aggregator.add_unique(entry):
            return
        console.print(
            f"[dim]{entry.timestamp.astimezone().strftime('%H:%M:%S')}[/dim] "
            f"[accent]{escape(entry.session_id[:8])}[/accent] {escape(_describe_entry(entry))}"
        )

    try:
        seen = watcher.watch(on_entry=_on_entry, max_seconds=seconds)
    except KeyboardInterrupt:
        seen = None
    if seen is not None:
        console.print(f"[dim]{seen} new entries across {len(aggregator)} sessions.[/dim]")


if __name__ == "__main__":
    app()
