"""Logging configuration for capaws.

Logging goes through loguru and is disabled by default, as a library
should be. ``setup_logging`` enables it and installs the sinks.

Example:
    from capaws.logging import LogConfig, setup_logging

    setup_logging(LogConfig(level="DEBUG", file="capaws.log"))
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger

logger.disable("capaws")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "TRACE"]

_CONTEXT_KEYS = (
    "component", "cluster", "machine", "instance_id", "resource_id",
)


def _format_context(record: Any) -> str:
    extra = record.get("extra", {})
    parts = [f"{k}={extra[k]}" for k in _CONTEXT_KEYS if k in extra]
    return f" [{' '.join(parts)}]" if parts else ""


def _patch_context(record: Any) -> None:
    record["extra"]["_ctx"] = _format_context(record)


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan>"
    "<dim>{extra[_ctx]}</dim> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line}{extra[_ctx]} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR).
        file: Path to log file. No file sink if None.
        console: Whether to log to stderr. Defaults to True.
        rotation: File rotation policy (e.g., "50 MB", "1 day"). Defaults to "50 MB".
        retention: Number of old log files to keep. Defaults to 10.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig | None = None) -> list[int]:
    """Enable capaws logging and install its sinks.

    Returns:
        Loguru handler ids, for ``teardown_logging``.
    """
    config = config or LogConfig()
    logger.configure(patcher=_patch_context)

    handler_ids: list[int] = []
    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            filter="capaws",
            colorize=True,
        ))
    if config.file:
        handler_ids.append(logger.add(
            config.file,
            level=config.level,
            format=FILE_FORMAT,
            filter="capaws",
            rotation=config.rotation,
            retention=config.retention,
        ))

    logger.enable("capaws")
    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for handler_id in handler_ids:
        logger.remove(handler_id)
    logger.disable("capaws")
