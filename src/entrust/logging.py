"""Logging setup for the ``entrust`` logger hierarchy.

Every component logs to ``entrust.<component>``. The CLI installs a stderr
handler, and a size-rotated log file when ``ENTRUST_LOG_DIR`` (or an explicit
directory) is set. Agent and test output pass through ``sanitize_for_log``
before they are logged.
"""

from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER = "entrust"
LOG_DIR_ENV = "ENTRUST_LOG_DIR"
LOG_LEVEL_ENV = "ENTRUST_LOG_LEVEL"

DEFAULT_LOG_FILE = "entrust.log"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_SECRET_PATTERNS = [
    (re.compile(r"ghp_[a-zA-Z0-9]{36}"), "[GITHUB_TOKEN]"),
    (re.compile(r"gho_[a-zA-Z0-9]{36}"), "[GITHUB_TOKEN]"),
    (re.compile(r"github_pat_[a-zA-Z0-9_]{82}"), "[GITHUB_TOKEN]"),
    (re.compile(r"lin_api_[a-zA-Z0-9]{40}"), "[LINEAR_TOKEN]"),
    (re.compile(r"ATATT[a-zA-Z0-9_\-=]{20,}"), "[JIRA_TOKEN]"),
    (re.compile(r"Bearer [a-zA-Z0-9._-]+"), "Bearer [REDACTED]"),
    (re.compile(r"Basic [a-zA-Z0-9+/=]+"), "Basic [REDACTED]"),
    (re.compile(r"token=[a-zA-Z0-9._-]+"), "token=[REDACTED]"),
]


def setup_logging(
    log_dir: str | Path | None = None,
    log_file: str = DEFAULT_LOG_FILE,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    level: str | None = None,
    console: bool = True,
) -> logging.Logger:
    """Configure the ``entrust`` logger. Safe to call more than once.

    Args:
        log_dir: Directory for the rotating log file. Falls back to
            ``ENTRUST_LOG_DIR``; without either, nothing is written to disk.
        log_file: Log file name inside ``log_dir``.
        max_bytes: Size at which the log file is rotated.
        backup_count: Rotated files to keep.
        level: DEBUG, INFO, WARNING or ERROR. Falls back to
            ``ENTRUST_LOG_LEVEL``, then INFO.
        console: Also log to stderr.

    Returns:
        The ``entrust`` logger.
    """
    log_dir = log_dir or os.environ.get(LOG_DIR_ENV)
    level = level or os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)
    logger.propagate = False
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = []

    log_path: Path | None = None
    if log_dir:
        log_path = Path(log_dir).expanduser() / log_file
        handlers.append(_file_handler(log_path, max_bytes, backup_count))
    if console:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if not handlers:
        logger.addHandler(logging.NullHandler())

    logger.debug("Logging initialized (level=%s, file=%s)", level, log_path)
    return logger


def _file_handler(path: Path, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")


def truncate_output(output: str, max_length: int = 5000) -> str:
    """Keep the beginning of long output, noting how much was cut."""
    if len(output) <= max_length:
        return output
    return output[:max_length] + f"\n... [truncated, {len(output) - max_length} more chars]"


def tail_output(output: str, max_length: int = 5000) -> str:
    """Keep the end of long output, noting how much was cut.

    Test runners print their failure summary last, so this is what the fix
    prompt uses.
    """
    if len(output) <= max_length:
        return output
    return f"[... {len(output) - max_length} earlier chars omitted]\n" + output[-max_length:]


def sanitize_for_log(text: str) -> str:
    """Redact tokens and credentials from text before it is logged."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text
