"""
Store configuration.

``StoreConfig`` collects the knobs that are fixed at construction time:
history capacities, the size of the identity signature cache and the error
handler used for subscriber and updater failures.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Dict, Optional

from .exceptions import AbortError


@dataclass(frozen=True)
class ErrorContext:
    """Where a reported error happened."""

    phase: str
    path: Optional[str] = None
    callback: Optional[Callable] = None


ErrorHandler = Callable[[BaseException, ErrorContext], None]


def log_error(error: BaseException, context: ErrorContext) -> None:
    """Default error handler: log with traceback, ignore aborts."""
    if isinstance(error, AbortError):
        logging.debug(f"Aborted {context.phase} at '{context.path}'")
        return
    logging.error(
        f"Error in {context.phase} for '{context.path}': {error}",
        exc_info=(type(error), error, error.__traceback__),
    )


@dataclass(frozen=True)
class StoreConfig:
    """
    Construction-time options for ``ObservableStore``.

    Attributes:
        max_history_length: Undo capacity for paths without an explicit
            limit. ``0`` disables history for those paths.
        history_limits: Per-path undo capacities, keyed by canonical path.
        signature_cache_size: Capacity of each signature cache (containers
            by identity, primitives by path).
        on_error: Called with failures raised by subscriber callbacks,
            async updaters and debounced functions.
        prune_history_on_unsubscribe: Drop history of paths nobody observes
            whenever a subscription ends.
    """

    max_history_length: int = 100
    history_limits: Dict[str, int] = field(default_factory=dict)
    signature_cache_size: int = 10000
    on_error: ErrorHandler = log_error
    prune_history_on_unsubscribe: bool = True

    def __post_init__(self):
        if self.max_history_length < 0:
            raise ValueError("max_history_length must be >= 0")
        if self.signature_cache_size <= 0:
            raise ValueError("signature_cache_size must be > 0")
        for path, limit in self.history_limits.items():
            if limit < 0:
                raise ValueError(f"History limit for '{path}' must be >= 0")

    def history_limit(self, path: str) -> int:
        return self.history_limits.get(path, self.max_history_length)

    def with_overrides(self, **overrides: Any) -> "StoreConfig":
        """Return a copy with the given fields replaced."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown store options: {', '.join(sorted(unknown))}")
        return replace(self, **overrides)
