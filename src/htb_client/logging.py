"""Centralized logging configuration using loguru.

Provides:
- Configurable log levels from Settings
- Standard library interception (httpx, httpcore)
- Structured key/value logging for the transport layer
- Optional file rotation logging

The library's own records are disabled until setup_logging() is called,
so importing htb_client never writes to an application's stderr.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Protocol

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger as LoguruLoggerType

# Type alias for log levels
LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

PACKAGE_NAME = "htb_client"

logger.disable(PACKAGE_NAME)


class Logger(Protocol):
    """Logging capability accepted by the pacer, pipeline and client.

    Fields are passed as keyword arguments and recorded as structured
    context rather than formatted into the message.
    """

    def debug(self, msg: str, **fields: Any) -> None: ...

    def info(self, msg: str, **fields: Any) -> None: ...

    def warn(self, msg: str, **fields: Any) -> None: ...

    def error(self, msg: str, **fields: Any) -> None: ...


class NoopLogger:
    """Logger that discards everything."""

    def debug(self, msg: str, **fields: Any) -> None:
        pass

    def info(self, msg: str, **fields: Any) -> None:
        pass

    def warn(self, msg: str, **fields: Any) -> None:
        pass

    def error(self, msg: str, **fields: Any) -> None:
        pass


class LoguruLogger:
    """Logger backed by loguru, binding fields into the record's extra.

    Usage:
        log = LoguruLogger(__name__)
        log.debug("Retrying request", attempt=1, url="https://...")
    """

    def __init__(self, name: str) -> None:
        self._logger = get_logger(name)

    def _log(self, level: str, msg: str, fields: dict[str, Any]) -> None:
        bound = self._logger.bind(**fields) if fields else self._logger
        if fields:
            details = " ".join(f"{key}={value}" for key, value in fields.items())
            msg = f"{msg} ({details})"
        # opt(depth=2) attributes the record to the caller, not this adapter
        bound.opt(depth=2).log(level, "{}", msg)

    def debug(self, msg: str, **fields: Any) -> None:
        self._log("DEBUG", msg, fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log("INFO", msg, fields)

    def warn(self, msg: str, **fields: Any) -> None:
        self._log("WARNING", msg, fields)

    def error(self, msg: str, **fields: Any) -> None:
        self._log("ERROR", msg, fields)


class InterceptHandler(logging.Handler):
    """Route standard library records (httpx, httpcore) into loguru.

    The stdlib logger name is bound as the record's ``name`` so
    intercepted lines share the console format of the package's own.
    """

    def emit(self, record: logging.LogRecord) -> None:
        level: str | int
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk past the logging module's frames to the real caller
        frame = logging.currentframe()
        depth = 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(
    level: LogLevel = "INFO",
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> LoguruLoggerType:
    """Configure logging for the application.

    Args:
        level: Base log level from config
        verbose: If True, use DEBUG level (overrides level)
        quiet: If True, use WARNING level (overrides level)
        log_file: Optional path for file logging with rotation
        rotation: When to rotate log file (e.g., "10 MB", "1 day")
        retention: How long to keep rotated logs
        serialize: If True, output JSON format (useful for file logs)

    Returns:
        Configured logger instance

    Note:
        verbose takes precedence over quiet if both are True.
    """
    effective_level: LogLevel
    if verbose:
        effective_level = "DEBUG"
    elif quiet:
        effective_level = "WARNING"
    else:
        effective_level = level

    logger.remove()
    logger.enable(PACKAGE_NAME)

    # Console handler with formatting
    logger.add(
        sys.stderr,
        level=effective_level,
        format=(
            "<dim>{time:HH:mm:ss}</dim> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[name]}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
        backtrace=True,
        diagnose=True,
        filter=lambda record: "name" in record["extra"],
    )

    # Fallback handler for logs without 'name' extra (e.g., from intercepted stdlib)
    logger.add(
        sys.stderr,
        level=effective_level,
        format=(
            "<dim>{time:HH:mm:ss}</dim> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
        backtrace=True,
        diagnose=True,
        filter=lambda record: "name" not in record["extra"],
    )

    if log_file:
        logger.add(
            log_file,
            level="DEBUG",  # Always capture everything to file
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[name]}:{function}:{line} | "
                "{extra} | "
                "{message}"
            ),
            rotation=rotation,
            retention=retention,
            compression="gz",
            serialize=serialize,
            filter=lambda record: "name" in record["extra"],
        )

    _intercept_stdlib_logging(effective_level)

    return logger


def _intercept_stdlib_logging(level: LogLevel) -> None:
    """Intercept standard library loggers and route to loguru.

    httpx and httpcore log through the standard library; they stay
    quiet unless DEBUG is requested.
    """
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    httpx_level = logging.DEBUG if level in ("TRACE", "DEBUG") else logging.WARNING
    logging.getLogger("httpx").setLevel(httpx_level)
    logging.getLogger("httpcore").setLevel(httpx_level)


def get_logger(name: str) -> LoguruLoggerType:
    """Get a logger with the given name bound as context.

    Usage:
        from htb_client.logging import get_logger
        logger = get_logger(__name__)

        logger = logger.bind(url="https://labs.hackthebox.com/api/v4/user/info")
        logger.info("Fetching")  # Logs with url context

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance with name bound
    """
    return logger.bind(name=name)


def reset_logging() -> None:
    """Remove all handlers and silence the package again."""
    logger.remove()
    logger.disable(PACKAGE_NAME)
