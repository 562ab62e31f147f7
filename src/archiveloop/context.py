"""Daemon execution context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from archiveloop.executor import LocalExecutor
from archiveloop.logger import get_logger
from archiveloop.tools import ExternalTools

if TYPE_CHECKING:
    import structlog

    from archiveloop.config import Configuration
    from archiveloop.executor import Executor


@dataclass(frozen=True)
class DaemonContext:
    """Configuration, logger and collaborator handles shared by every component."""

    config: Configuration
    executor: Executor
    tools: ExternalTools
    logger: structlog.stdlib.BoundLogger

    @classmethod
    def create(cls, config: Configuration, executor: Executor | None = None) -> DaemonContext:
        """Build a context, defaulting to real subprocess execution."""
        executor = executor or LocalExecutor()
        logger = get_logger("archiveloop")
        return cls(
            config=config,
            executor=executor,
            tools=ExternalTools(executor, config.commands, logger),
            logger=logger,
        )
