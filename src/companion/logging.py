"""Logging setup for Companion.

Everything logs under the ``companion`` logger. Verbosity runs from 0
(errors) to 4 (trace); at 3 and above a log file is always written, into
``<project>/.companion/companion.log`` unless ``logging.file`` or
``COMPANION_LOG`` names another one. The REPL owns the terminal, so
stderr only gets warnings and errors, and only on a real console.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from companion.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("companion")

LOG_FILENAME = "companion.log"

# Chatty libraries; raised to WARNING below trace verbosity
THIRD_PARTY_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy", "httpx", "httpcore", "mcp")

_LEVEL_MAP = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: VERBOSE,
    4: TRACE,
}

_handlers: list[logging.Handler] = []


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Verbosity wins over the level name; INFO when neither is set."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY_MAP.get(config.verbose, TRACE)
    if config.level:
        return _LEVEL_MAP.get(config.level.upper(), logging.INFO)
    return logging.INFO


def resolve_log_path(
    config: LoggingConfig | None, level: int, project_dir: Path | None = None
) -> Path | None:
    path = config.file if config and config.file else os.environ.get("COMPANION_LOG")
    if path:
        return Path(path).expanduser()
    if project_dir is not None and level <= VERBOSE:
        return project_dir / LOG_FILENAME
    return None


def quiet_third_party(level: int) -> None:
    """Keep provider and protocol libraries out of our log unless tracing."""
    import litellm

    litellm.suppress_debug_info = True
    third_party_level = logging.DEBUG if level <= TRACE else logging.WARNING
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


def setup_logging(config: LoggingConfig | None = None, project_dir: Path | None = None) -> None:
    """Install handlers on the ``companion`` logger.

    Safe to call again: handlers from an earlier call are replaced.

    Args:
        config: Logging section of the loaded configuration.
        project_dir: The project's ``.companion`` directory, used for the
            default log file at high verbosity.
    """
    reset_logging()
    level = resolve_level(config)
    logger.setLevel(level)
    quiet_third_party(level)

    formatter = _LowercaseLevelFormatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
    )

    log_path = resolve_log_path(config, level, project_dir)
    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            _install(logging.FileHandler(log_path, mode="a", encoding="utf-8"), formatter, level)
        except OSError as e:
            if sys.stderr.isatty():
                print(f"[companion] Failed to open log file: {e}", file=sys.stderr)
        else:
            logger.debug("Logging to %s", log_path)
            return

    if sys.stderr.isatty():
        _install(logging.StreamHandler(sys.stderr), formatter, max(level, logging.WARNING))


def _install(handler: logging.Handler, formatter: logging.Formatter, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    _handlers.append(handler)


def reset_logging() -> None:
    """Remove and close the handlers ``setup_logging`` installed."""
    while _handlers:
        handler = _handlers.pop()
        logger.removeHandler(handler)
        handler.close()


def get_logger(name: str | None = None) -> logging.Logger:
    """Child of the ``companion`` logger, e.g. ``get_logger("mcp")``."""
    if name:
        return logger.getChild(name)
    return logger
