"""
Runtime configuration read from the environment.

All settings have defaults; the environment only needs to override what
differs. Settings are read once and cached, call ``get_settings.cache_clear()``
after changing the environment (tests do this through monkeypatch).

- ``COSYNC_LOG_LEVEL`` -> ``log_level`` (default ``WARNING``)
- ``COSYNC_EVENT_STRATEGY`` -> ``event_strategy`` (``waiters`` or ``broadcast``, default ``waiters``)
- ``COSYNC_DEBUG_SIGNALS`` -> ``debug_signals`` (default ``false``)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache

from typing_extensions import Literal, TypeAlias

EventStrategy: TypeAlias = Literal["waiters", "broadcast"]

EVENT_STRATEGIES: tuple[str, ...] = ("waiters", "broadcast")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """
    Process-wide defaults for cosync.

    Attributes:
        log_level: Level applied by :func:`cosync.utilities.logging.configure_logging`.
        event_strategy: Which :class:`BaseEvent` implementation
            :func:`make_event` builds when no strategy is passed.
        debug_signals: Install SIGINT/SIGTERM/SIGUSR1 handlers that dump the
            event loop state while ``run_until_complete`` is running.
    """

    log_level: str = "WARNING"
    event_strategy: EventStrategy = "waiters"
    debug_signals: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """
        Build settings from environment variables.

        Raises:
            ValueError: If a variable is set to an unsupported value.
        """
        env = os.environ if environ is None else environ

        log_level = env.get("COSYNC_LOG_LEVEL", cls.log_level).strip().upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValueError(f"COSYNC_LOG_LEVEL must be a logging level name, got {log_level!r}")

        event_strategy = env.get("COSYNC_EVENT_STRATEGY", cls.event_strategy).strip().lower()
        if event_strategy not in EVENT_STRATEGIES:
            raise ValueError(
                f"COSYNC_EVENT_STRATEGY must be one of {', '.join(EVENT_STRATEGIES)}, got {event_strategy!r}"
            )

        debug_signals = _parse_bool("COSYNC_DEBUG_SIGNALS", env.get("COSYNC_DEBUG_SIGNALS", ""))

        return cls(
            log_level=log_level,
            event_strategy=event_strategy,  # type: ignore[arg-type]
            debug_signals=debug_signals,
        )


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return the settings for this process, reading the environment on first use."""
    return Settings.from_env()


__all__ = [
    "EVENT_STRATEGIES",
    "EventStrategy",
    "Settings",
    "get_settings",
]
