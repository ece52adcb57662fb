from __future__ import annotations

from agent_logs.core.aggregator import SessionAggregator
from agent_logs.core.commands import CommandExtractor
from agent_logs.core.config import AgentLogsConfig, ConfigError, load_config
from agent_logs.core.grouper import ChangeGrouper, classify
from agent_logs.core.stats import compute_daily_stats, compute_stats

__all__ = [
    "AgentLogsConfig",
    "ChangeGrouper",
    "CommandExtractor",
    "ConfigError",
    "SessionAggregator",
    "classify",
    "compute_daily_stats",
    "compute_stats",
    "load_config",
]
