"""Logging configuration.

Records emitted while a turn is running are tagged with the project and the agent
currently working, so interleaved turns of different projects stay readable.
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from pydantic import BaseModel

turn_context: ContextVar[str] = ContextVar("turn_context", default="-")


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - [%(turn)s] %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    @classmethod
    def from_env(cls) -> "LogConfig":
        return cls(level=os.getenv("LOG_LEVEL", "INFO"))


class TurnContextFilter(logging.Filter):
    """Adds the running turn's project/agent tag to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.turn = turn_context.get()
        return True


@contextmanager
def log_context(project_id: str, agent_id: str | None = None) -> Iterator[None]:
    """Tag log records emitted inside the block with the project and agent."""
    token = turn_context.set(f"{project_id}/{agent_id}" if agent_id else project_id)
    try:
        yield
    finally:
        turn_context.reset(token)


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root logger for the service."""
    config = config or LogConfig.from_env()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(config.format, datefmt=config.date_format))
    handler.addFilter(TurnContextFilter())

    logging.basicConfig(level=config.level.upper(), handlers=[handler], force=True)

    for noisy in ("anthropic", "httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)
        level: Optional explicit level, otherwise LOG_LEVEL or INFO

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    return logger
