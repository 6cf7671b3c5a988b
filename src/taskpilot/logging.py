"""Logging configuration for taskpilot.

Everything logs under the ``taskpilot`` logger. Where records go is decided
once at startup, first match wins:

1. ``logging.file`` from config
2. the TASKPILOT_LOG environment variable
3. ``<session data dir>/logs/taskpilot.log`` when the server knows its data dir
4. stderr, but only when attached to a terminal

Verbosity levels: error(0), warning(1), info(2), verbose(3), trace(4).
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskpilot.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_ENV_VAR = "TASKPILOT_LOG"
LOG_FILENAME = "taskpilot.log"

# litellm and its HTTP client log every completion request at info
_CHATTY_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy", "httpx", "httpcore")

logger = logging.getLogger("taskpilot")

_initialized = False

_LEVEL_MAP = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: VERBOSE,
    4: TRACE,
}


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective log level; verbose (int) wins over level (str)."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY_MAP.get(config.verbose, TRACE)
    if config.level:
        return _LEVEL_MAP.get(config.level.upper(), logging.INFO)
    return logging.INFO


def resolve_log_path(
    config: LoggingConfig | None, data_dir: str | Path | None = None
) -> Path | None:
    """Where the log file goes, or None for stderr."""
    explicit = (config.file if config else None) or os.environ.get(LOG_ENV_VAR)
    if explicit:
        return Path(explicit).expanduser()
    if data_dir is not None:
        return Path(data_dir).expanduser() / "logs" / LOG_FILENAME
    return None


def setup_logging(
    config: LoggingConfig | None = None, *, data_dir: str | Path | None = None
) -> None:
    """Initialize logging. Call once at startup; later calls are no-ops.

    Args:
        config: level, verbose and file settings.
        data_dir: the session data directory; the default log file lives
            under it when no file is configured.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    log_level = resolve_level(config)
    logger.setLevel(log_level)
    _quiet_dependencies(log_level)

    formatter = _LowercaseLevelFormatter(
        "%(asctime)s %(levelname)s: %(message)s", datefmt="%H:%M:%S"
    )

    log_path = resolve_log_path(config, data_dir)
    if log_path is None:
        if sys.stderr.isatty():
            _add_stderr_handler(formatter, log_level)
        return

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        if sys.stderr.isatty():
            print(f"[taskpilot] Failed to open log file {log_path}: {e}", file=sys.stderr)
            _add_stderr_handler(formatter, log_level)
        return
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def _quiet_dependencies(level: int) -> None:
    # Request-level chatter from the LLM stack only shows at trace
    if level <= TRACE:
        return
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _add_stderr_handler(formatter: logging.Formatter, level: int = logging.DEBUG) -> None:
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """Root taskpilot logger, or a child such as "session" or "orchestrator"."""
    if name:
        return logger.getChild(name)
    return logger
