"""A logger carried in the current context, and timing log helpers."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import timedelta
from typing import Callable, Iterator, Union

from .env import format_duration

AnyLogger = Union[logging.Logger, logging.LoggerAdapter]

_current: ContextVar[AnyLogger | None] = ContextVar("warden_logger", default=None)


@contextmanager
def bind_logger(logger: AnyLogger) -> Iterator[AnyLogger]:
    """Make ``logger`` the current logger for the duration of the block."""
    token = _current.set(logger)
    try:
        yield logger
    finally:
        _current.reset(token)


def current_logger() -> AnyLogger:
    """Return the bound logger, or a fallback one after warning that none is bound."""
    logger = _current.get()
    if logger is None:
        fallback = logging.LoggerAdapter(
            logging.getLogger("warden.uninitialized"),
            {"WARNING": "uninitialized logger from context"},
        )
        fallback.warning("couldn't find logger in context")
        return fallback
    return logger


def log_end_time(message: str, start_time: float) -> timedelta:
    """Log the end of ``message`` with the time since ``start_time`` (monotonic)."""
    elapsed = timedelta(seconds=time.monotonic() - start_time)
    current_logger().debug("%s end exec-time=%s", message, format_duration(elapsed))
    return elapsed


def log_start_time(message: str) -> Callable[[], timedelta]:
    """Log the start of ``message`` and return a function that logs its end."""
    current_logger().debug("%s start", message)
    start = time.monotonic()
    return lambda: log_end_time(message, start)