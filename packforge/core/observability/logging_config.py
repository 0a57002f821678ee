"""
Logging configuration — process-wide setup for the packforge CLI.

``main.py`` calls ``setup_logging`` once. Library modules only do
``logger = logging.getLogger(__name__)`` and never touch handlers, so an
SDK host keeps full control of its own logging.

Level precedence:
    --debug / --verbose / --quiet  >  PACKFORGE_LOG_LEVEL  >  WARNING

File output is opt-in via PACKFORGE_LOG_FILE (level PACKFORGE_LOG_FILE_LEVEL).

Provider threads run inside the pipeline's agent scope, so every record
is stamped with the build agent that produced it (``%(agent)s``; ``-``
outside a run). Detailed formats show it; the minimal console one does not.
"""

from __future__ import annotations

import logging
import sys

from packforge.core.engine.scope import current_agent

# ── Formats ─────────────────────────────────────────────────────

_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: (
        "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d [%(threadName)s@%(agent)s] %(message)s",
        "%H:%M:%S",
    ),
    logging.INFO: ("%(asctime)s [%(agent)s] %(message)s", "%H:%M:%S"),
}
_CONSOLE_DEFAULT: tuple[str, str | None] = ("%(message)s", None)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(name)s [%(threadName)s@%(agent)s] %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Stay at WARNING unless the console runs at DEBUG.
_NOISY_LOGGERS = ("asyncio", "urllib3")

NO_AGENT = "-"


class AgentContextFilter(logging.Filter):
    """Adds ``record.agent``: the name of the build agent in scope."""

    def filter(self, record: logging.LogRecord) -> bool:
        agent = current_agent()
        record.agent = agent.name if agent is not None else NO_AGENT
        return True


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Install console (stderr) and optional file handlers on the root logger.

    Args:
        level: Console level name; unknown names fall back to WARNING.
        log_file: Path of an optional log file.
        log_file_level: File level name, defaults to ``level``.
        quiet_third_party: Pin noisy library loggers to WARNING below DEBUG.
    """
    console_level = _parse_level(level)
    agent_filter = AgentContextFilter()

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_console_handler(console_level, agent_filter))
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        root_level = min(root_level, file_level)
        root.addHandler(_file_handler(log_file, file_level, agent_filter))

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _console_handler(level: int, agent_filter: logging.Filter) -> logging.Handler:
    fmt, datefmt = _CONSOLE_DEFAULT
    for threshold in sorted(_CONSOLE_FORMATS):
        if level <= threshold:
            fmt, datefmt = _CONSOLE_FORMATS[threshold]
            break

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(agent_filter)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int, agent_filter: logging.Filter) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.addFilter(agent_filter)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def _parse_level(level: str | None) -> int:
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else logging.WARNING
