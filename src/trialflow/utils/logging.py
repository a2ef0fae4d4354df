"""Logging utilities for trialflow."""

import logging
import sys
from typing import Any


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Configure logging for trialflow.

    Calling this more than once replaces the previously installed handler.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format_string: Custom format string.
        handler: Custom handler. Defaults to StreamHandler on stdout.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if format_string is None:
        format_string = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)

    handler.setFormatter(logging.Formatter(format_string))

    logger = logging.getLogger("trialflow")
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.setLevel(level)
    logger.addHandler(handler)

    # Keep experiment logs out of the host application's root logger
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a trialflow module.

    Args:
        name: Module name (e.g., "workflow", "checkpoint").

    Returns:
        Logger under the trialflow namespace.
    """
    return logging.getLogger(f"trialflow.{name}")


class StructuredLogger:
    """Logger that appends key=value context to every message."""

    def __init__(self, name: str):
        self._name = name
        self._logger = get_logger(name)
        self._context: dict[str, Any] = {}

    def with_context(self, **kwargs: Any) -> "StructuredLogger":
        """Add context to all log messages.

        Args:
            **kwargs: Context key-value pairs.

        Returns:
            Self for chaining.
        """
        self._context.update({k: v for k, v in kwargs.items() if v is not None})
        return self

    def bind(self, **kwargs: Any) -> "StructuredLogger":
        """Child logger with extra context; this logger is left unchanged."""
        child = StructuredLogger(self._name)
        child._context = dict(self._context)
        return child.with_context(**kwargs)

    def with_trial(self, trial_id: str, index: int, total: int | None = None) -> "StructuredLogger":
        """Child logger tagged with a trial and its 1-based sequence position."""
        position = f"{index + 1}/{total}" if total is not None else str(index + 1)
        return self.bind(trial=trial_id, position=position)

    def _format_message(self, message: str, **kwargs: Any) -> str:
        data = {**self._context, **kwargs}
        if data:
            pairs = [f"{k}={v}" for k, v in data.items()]
            return f"{message} | {' '.join(pairs)}"
        return message

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(self._format_message(message, **kwargs))
