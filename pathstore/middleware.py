"""
Update middlewares.

A middleware is ``(store, next_update) -> update``: it receives the store and
the next function in the chain and returns a replacement with the same
signature, ``update(path, value, **options)``. Paths reaching a middleware
are already canonical. The first middleware in the list is the outermost.
"""

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable

from .exceptions import ReadOnlyPathError
from .path import is_ancestor, resolve_path

if TYPE_CHECKING:
    from .store import ObservableStore

UpdateFn = Callable[..., Any]
Middleware = Callable[["ObservableStore", UpdateFn], UpdateFn]


def compose_middlewares(
    store: "ObservableStore", middlewares: Iterable[Middleware], update: UpdateFn
) -> UpdateFn:
    wrapped = update
    for middleware in reversed(list(middlewares)):
        wrapped = middleware(store, wrapped)
        if not callable(wrapped):
            raise TypeError(f"Middleware {middleware!r} did not return a callable")
    return wrapped


def logging_middleware(store: "ObservableStore", next_update: UpdateFn) -> UpdateFn:
    """Log every update at debug level."""

    def update(path: str, value: Any, **options: Any) -> Any:
        logging.debug(f"update '{path}' <- {value!r} {options or ''}")
        return next_update(path, value, **options)

    return update


def freeze_middleware(paths: Iterable[Any]) -> Middleware:
    """
    Reject writes that would change any of ``paths``.

    A write to a frozen path, below it, or to one of its ancestors raises
    ``ReadOnlyPathError`` before anything is staged.
    """
    frozen = frozenset(resolve_path(path) for path in paths)

    def middleware(store: "ObservableStore", next_update: UpdateFn) -> UpdateFn:
        def update(path: str, value: Any, **options: Any) -> Any:
            for locked in frozen:
                if path == locked or is_ancestor(locked, path) or is_ancestor(path, locked):
                    raise ReadOnlyPathError(f"'{path}' is read-only (frozen: '{locked}')")
            return next_update(path, value, **options)

        return update

    return middleware
