"""Logging for AgentGrid.

One package logger (``agentgrid``) with child loggers per component, e.g.
``get_logger("scheduler")``. Two extra levels sit around the standard ones:
TRACE (5) for per-event delivery noise and VERBOSE (15) for lifecycle detail.

Output goes to the file named by ``logging.file`` in config (or the
AGENTGRID_LOG environment variable), else to stderr. uvicorn's error log is
folded into the same handlers; its access log is left disabled.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentgrid.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("agentgrid")

_initialized = False

_NAMED_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "verbose": VERBOSE,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# -v count: 0=errors only ... 4=everything
_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

# Loggers owned by the ASGI server that should share our handlers
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error")


class _LowercaseLevelFormatter(logging.Formatter):
    """``12:30:01 info: message``"""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level: an explicit verbosity count beats a level name."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = min(max(config.verbose, 0), len(_VERBOSITY_LEVELS) - 1)
        return _VERBOSITY_LEVELS[index]
    if config.level:
        return _NAMED_LEVELS.get(config.level.lower(), logging.INFO)
    return logging.INFO


def _make_handler(path: str | None) -> logging.Handler:
    if path:
        try:
            return logging.FileHandler(os.path.expanduser(path), mode="a", encoding="utf-8")
        except OSError as e:
            print(f"[agentgrid] Cannot open log file {path}: {e}", file=sys.stderr)
    return logging.StreamHandler(sys.stderr)


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Attach handlers once. Later calls are no-ops."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = resolve_level(config)
    path = config.file if config and config.file else os.environ.get("AGENTGRID_LOG")

    handler = _make_handler(path)
    handler.setLevel(level)
    handler.setFormatter(_LowercaseLevelFormatter("%(asctime)s %(levelname)s: %(message)s", datefmt="%H:%M:%S"))

    logger.setLevel(level)
    logger.addHandler(handler)

    for name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers = [handler]
        server_logger.propagate = False
    logging.getLogger("uvicorn.access").disabled = True


def get_logger(name: str | None = None) -> logging.Logger:
    """Child logger of ``agentgrid`` (or the package logger itself)."""
    return logger.getChild(name) if name else logger
