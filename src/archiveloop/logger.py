"""Logging infrastructure for archiveloop."""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import Any

import structlog

from archiveloop.models import LogLevel

__all__ = [
    "CONTINUATION_MARKER",
    "configure_logging",
    "get_logger",
    "read_log_tail",
    "truncate_log",
]

# Prefix for lines relayed from an external tool's output
CONTINUATION_MARKER = "| "


def configure_logging(
    log_file_path: Path,
    log_file_level: LogLevel = LogLevel.INFO,
    log_cli_level: LogLevel = LogLevel.INFO,
) -> None:
    """Configure structlog with dual output: the append-only log file and the terminal.

    Args:
        log_file_path: Path to the log file (opened in append mode)
        log_file_level: Minimum level for file logging
        log_cli_level: Minimum level for terminal display

    The file receives plain text lines, each starting with a timestamp, so the
    log stays readable with `tail` on the appliance. The terminal gets the
    same lines with colors.
    """
    log_file_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file_path, mode="a", encoding="utf-8")
    file_handler.setLevel(log_file_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_cli_level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=shared_processors,
        )
    )
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=True),
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(min(log_file_level, log_cli_level))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger with bound context.

    Args:
        name: Logger name
        **context: Additional context to bind (e.g., component)

    Returns:
        BoundLogger with context
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


def truncate_log(log_file_path: Path, max_lines: int = 10_000) -> bool:
    """Keep only the most recent `max_lines` lines of the log file.

    The file is rewritten in place rather than replaced, so a FileHandler that
    already holds it open in append mode keeps writing to the same file.

    Returns:
        True if the file was truncated, False if it was missing or short enough
    """
    if not log_file_path.exists():
        return False

    with log_file_path.open("r+", encoding="utf-8", errors="replace") as f:
        lines = f.readlines()
        if len(lines) <= max_lines:
            return False
        f.seek(0)
        f.writelines(lines[-max_lines:])
        f.truncate()
    return True


def read_log_tail(log_file_path: Path, lines: int) -> list[str]:
    """Return the last `lines` lines of the log file without trailing newlines."""
    with log_file_path.open(encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]
