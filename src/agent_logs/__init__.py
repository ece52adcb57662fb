"""Ingest AI coding-assistant session logs into sessions and logical changes."""

__version__ = "0.1.0"
