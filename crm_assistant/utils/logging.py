"""Logging setup for the API process and its modules."""

import logging
import os
import sys

from pydantic import BaseModel, Field


class LogConfig(BaseModel):
    """Root logger settings, read from LOG_LEVEL and LOG_FORMAT."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    # Client and database libraries log every request at INFO
    quiet_loggers: tuple[str, ...] = Field(
        default=("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "uvicorn.access")
    )

    @classmethod
    def from_env(cls) -> "LogConfig":
        values = {"level": os.getenv("LOG_LEVEL", "INFO")}
        if fmt := os.getenv("LOG_FORMAT"):
            values["format"] = fmt
        return cls(**values)


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root logger once per process."""
    config = config or LogConfig.from_env()

    logging.basicConfig(
        level=config.level.upper(),
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )
    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger at LOG_LEVEL."""
    logger = logging.getLogger(name)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    return logger
