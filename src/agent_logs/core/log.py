from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = logging.WARNING) -> None:
    """Send agent_logs records to stderr at ``level``.

    Repeated calls only adjust the level.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
    logging.getLogger("agent_logs").setLevel(level)
