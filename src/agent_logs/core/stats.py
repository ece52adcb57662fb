from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta, tzinfo

from agent_logs.models import DailyStats, Session, Stats


def compute_stats(sessions: Iterable[Session], tz: tzinfo = UTC) -> Stats:
    """Totals across sessions; hourly activity buckets sessions by start hour in ``tz``."""
    sessions = list(sessions)
    tool_counts: Counter[str] = Counter()
    hourly: Counter[int] = Counter()

    for session in sessions:
        hourly[session.start_time.astimezone(tz).hour] += 1
        for change in session.changes:
            for tool in change.tools:
                tool_counts[tool.name.lower()] += 1

    return Stats(
        total_sessions=len(sessions),
        active_sessions=sum(1 for session in sessions if session.is_active),
        total_user_messages=sum(session.user_message_count for session in sessions),
        total_assistant_messages=sum(session.assistant_message_count for session in sessions),
        total_tool_calls=sum(session.tool_call_count for session in sessions),
        total_input_tokens=sum(session.total_input_tokens for session in sessions),
        total_output_tokens=sum(session.total_output_tokens for session in sessions),
        tool_usage_counts=dict(tool_counts.most_common()),
        hourly_activity=dict(sorted(hourly.items())),
    )


def compute_daily_stats(
    sessions: Iterable[Session],
    days: int = 7,
    today: date | None = None,
    tz: tzinfo = UTC,
) -> list[DailyStats]:
    """One ``DailyStats`` per calendar day, newest first.

    A session counts toward the day it started on. Days without sessions are
    still present with zero totals.
    """
    if days <= 0:
        return []
    today = today or datetime.now(tz).date()
    window = [today - timedelta(days=offset) for offset in range(days)]
    buckets: dict[date, list[Session]] = {day: [] for day in window}

    for session in sessions:
        day = session.start_time.astimezone(tz).date()
        if day in buckets:
            buckets[day].append(session)

    return [
        DailyStats(
            day=day,
            session_count=len(buckets[day]),
            user_messages=sum(session.user_message_count for session in buckets[day]),
            assistant_messages=sum(session.assistant_message_count for session in buckets[day]),
            tool_calls=sum(session.tool_call_count for session in buckets[day]),
            input_tokens=sum(session.total_input_tokens for session in buckets[day]),
            output_tokens=sum(session.total_output_tokens for session in buckets[day]),
        )
        for day in window
    ]
