"""
Logging helpers for cosync.

- :func:`log_async` traces entry, exit and failure of coroutine functions at
  DEBUG level, using the logger of the module that defines them.
- :func:`configure_logging` attaches a stream handler to the ``cosync``
  logger using the level from :class:`~cosync.config.Settings`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from functools import wraps
from typing import Callable, TypeVar

from typing_extensions import ParamSpec

from cosync.config import get_settings

_P = ParamSpec("_P")
_R = TypeVar("_R")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def log_async(func: Callable[_P, Awaitable[_R]]) -> Callable[_P, Awaitable[_R]]:
    """
    Decorate a coroutine function with DEBUG tracing.

    Examples:
        >>> @log_async
        ... async def compute(x: int) -> int:
        ...     return x * 2
        >>> compute.__name__
        'compute'
    """
    logger = logging.getLogger(func.__module__)
    name = func.__qualname__

    @wraps(func)
    async def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        logger.debug(f"-> {name}")
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.debug(f"!! {name} raised {e!r}")
            raise
        logger.debug(f"<- {name} returned {result!r}")
        return result

    return wrapper


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """
    Send cosync's log records to stderr.

    Calling this more than once replaces the handler instead of adding another.

    Args:
        level: A level name or number. Defaults to ``COSYNC_LOG_LEVEL``.

    Returns:
        The configured ``cosync`` logger.
    """
    logger = logging.getLogger("cosync")
    resolved = get_settings().log_level if level is None else level
    logger.setLevel(resolved.upper() if isinstance(resolved, str) else resolved)

    for handler in list(logger.handlers):
        if getattr(handler, "_cosync_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._cosync_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger


__all__ = [
    "configure_logging",
    "log_async",
]
