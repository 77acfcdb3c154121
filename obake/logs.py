"""Process-wide logging setup.

The level comes from a closed set and is applied once, before anything else
logs.  Call sites never pass their own level; they read the one configured
here through the standard ``logging`` hierarchy.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum

from pydantic import BaseModel, ConfigDict
from rich.console import Console
from rich.logging import RichHandler

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class LogLevel(str, Enum):
    """Accepted log levels, most to least severe."""

    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"
    TRACE = "trace"

    @property
    def numeric(self) -> int:
        return _NUMERIC_LEVELS[self]


_NUMERIC_LEVELS: dict[LogLevel, int] = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARN: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.TRACE: TRACE,
}


class LoggingAlreadyConfiguredError(RuntimeError):
    """Raised when logging is configured a second time in one process."""


class LogConfig(BaseModel):
    """The level a process was configured with.  Read-only once created."""

    model_config = ConfigDict(frozen=True)

    level: LogLevel

    def enabled(self, level: LogLevel) -> bool:
        return level.numeric >= self.level.numeric


_lock = threading.Lock()
_active: LogConfig | None = None
_handler: logging.Handler | None = None


def parse_level(value: str | LogLevel) -> LogLevel:
    """Map a level name (case-insensitive) onto :class:`LogLevel`."""
    if isinstance(value, LogLevel):
        return value
    try:
        return LogLevel(value.strip().lower())
    except ValueError:
        allowed = ", ".join(level.value for level in LogLevel)
        raise ValueError(f"invalid log level {value!r} (expected one of: {allowed})") from None


def configure_logging(
    level: str | LogLevel,
    *,
    console: Console | None = None,
) -> LogConfig:
    """Install the console handler and set the root level, exactly once."""
    global _active, _handler
    parsed = parse_level(level)
    with _lock:
        if _active is not None:
            raise LoggingAlreadyConfiguredError(
                f"logging already configured at level {_active.level.value!r}"
            )
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(parsed.numeric)
        _handler = handler
        _active = LogConfig(level=parsed)
    return _active


def current_config() -> LogConfig | None:
    """The active configuration, or ``None`` before :func:`configure_logging`."""
    return _active


def reset_logging() -> None:
    """Remove the installed handler and forget the configuration.

    Only for embedding and test harnesses that run several entry points in
    one interpreter.
    """
    global _active, _handler
    with _lock:
        if _handler is not None:
            logging.getLogger().removeHandler(_handler)
        logging.getLogger().setLevel(logging.WARNING)
        _handler = None
        _active = None


def trace(logger: logging.Logger, msg: str, *args: object) -> None:
    """Log at the custom TRACE level."""
    if logger.isEnabledFor(TRACE):
        logger.log(TRACE, msg, *args)
