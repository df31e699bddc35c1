"""
ObservableStore - Path-Addressable Reactive State
=================================================

One mutable state tree with fine-grained subscriptions, transactional
batches, per-path undo/redo and cancellable async updates.

Every write funnels through ``update(path, value)``:

1. middlewares wrap the call (the first one is outermost);
2. a callable value is applied to the current value;
3. inside a batch the value is staged, otherwise it is committed.

A commit runs in two phases. First every pending write goes through change
detection; real changes are written, their signatures recorded and pushed to
history. Then subscribers are notified once for the whole commit, so no
callback ever sees a half-applied batch.

Usage:
    store = create_observable_store({"counter": 0, "user": {"name": "Ada"}})

    store.subscribe_to_path("counter", print)
    store.update("counter", lambda n: n + 1)   # prints 1
    store.undo("counter")                      # prints 0

    with store.batch():
        store.update("user.name", "Grace")
        store.state.counter = 10               # one notification pass
"""

import inspect
import logging
import sys
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .async_updates import AsyncUpdateController, Debounced, Updater
from .batch import BatchContext, BatchManager, BatchMode
from .config import StoreConfig
from .container import DELETE, StateContainer
from .exceptions import InvalidPathError, PathStoreError
from .history import HistoryManager
from .middleware import Middleware, compose_middlewares
from .path import normalize_cache_key, normalize_path, parent_path, resolve_path
from .registry import Change, NotificationRegistry, Subscription
from .signature import ChangeDetector
from .tracking import Interceptor, unwrap


class ObservableStore:
    """
    Reactive store over a single state tree.

    Args:
        initial_state: Root of the tree (a dict unless given). The store
            takes ownership; mutate it only through the store.
        middlewares: ``(store, next_update) -> update`` wrappers around
            ``update``.
        config: A ``StoreConfig``; keyword ``options`` override its fields.
    """

    def __init__(
        self,
        initial_state: Any = None,
        middlewares: Optional[Iterable[Middleware]] = None,
        config: Optional[StoreConfig] = None,
        **options: Any,
    ):
        config = config or StoreConfig()
        if options:
            config = config.with_overrides(**options)
        limits = {normalize_path(path): n for path, n in config.history_limits.items()}
        self.config = config.with_overrides(history_limits=limits)

        self._container = StateContainer(initial_state)
        self._detector = ChangeDetector(self.config.signature_cache_size)
        self._history = HistoryManager(self.config.history_limit)
        self._registry = NotificationRegistry(self.config.on_error)
        self._batches = BatchManager(self._commit)
        self._async = AsyncUpdateController(self.config.on_error)
        self._interceptor = Interceptor(self)
        self._scheduled: Set[Debounced] = set()

        self._middlewares = list(middlewares or ())
        self._update = compose_middlewares(self, self._middlewares, self._apply_update)

    # ========================================================================
    # PATHS AND READS
    # ========================================================================

    def resolve_path(self, path: Any) -> str:
        """Canonical string form of a path, recorder, proxy or accessor."""
        return resolve_path(path, self._interceptor.capture)

    def _read(self, path: str) -> Any:
        if not path:
            return self._container.root
        return self._batches.read(path, self._container.read)

    def get(self, path: Any) -> Any:
        """Current value at ``path`` (staged values included), None if absent."""
        return self._read(self.resolve_path(path))

    @property
    def state(self) -> Any:
        """Root proxy: reads are tracked, writes become updates."""
        return self._interceptor.wrap("", self._container.root)

    s = state

    def get_raw_store(self) -> Any:
        return self._container.root

    def set_raw_store(self, new_state: Any, keep_quiet: bool = False) -> None:
        """
        Replace the whole tree.

        Recorded signatures are dropped, so the next write to any path is
        compared against the new tree's content. History is kept.
        """
        self._container.replace(unwrap(new_state))
        self._detector.clear()
        logging.debug("Replaced raw store")
        if not keep_quiet:
            self.invalidate_all()

    # ========================================================================
    # WRITES
    # ========================================================================

    def resolve_value(self, path: Any, value: Any) -> Any:
        """The value ``update(path, value)`` would write, without writing it."""
        return self._resolve_value(self.resolve_path(path), value)

    def _resolve_value(self, path: str, value: Any) -> Any:
        if callable(value) and not isinstance(value, type) and value is not DELETE:
            value = value(self._read(path))
        return unwrap(value)

    def update(self, path: Any, value: Any, *, keep_quiet: bool = False, **options: Any) -> Any:
        """
        Write ``value`` (or ``value(current)`` when callable) at ``path``.

        Args:
            keep_quiet: Write and record history without notifying.
            record_history: Push the change to the path's undo stack
                (default True).
            invalidate: Extra keys to re-notify if this write commits a
                change.

        Returns:
            The value written.

        Raises:
            IntermediateUndefinedError: If the parent of ``path`` is missing.
        """
        resolved = self.resolve_path(path)
        return self._update(resolved, value, keep_quiet=keep_quiet, **options)

    def delete(self, path: Any) -> None:
        """Remove the key at ``path``."""
        self.update(path, DELETE)

    def _apply_update(
        self,
        path: str,
        value: Any,
        *,
        keep_quiet: bool = False,
        record_history: bool = True,
        invalidate: Iterable[str] = (),
    ) -> Any:
        value = self._resolve_value(path, value)
        invalidate = tuple(invalidate)
        if self._batches.is_open:
            self._batches.stage(
                path,
                value,
                invalidate,
                keep_quiet=keep_quiet,
                record_history=record_history,
            )
            return value
        self._commit(
            {path: value},
            invalidate,
            {path: {"keep_quiet": keep_quiet, "record_history": record_history}},
        )
        return value

    def _commit(
        self,
        pending: Dict[str, Any],
        forced: Iterable[str] = (),
        options: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> List[Change]:
        """
        Apply ``pending`` in order, then notify once.

        A write that fails structurally is skipped; the others still commit
        and the first failure is raised after dispatch. Changes applied
        before an unexpected error are still dispatched before it propagates.
        """
        options = options or {}
        changes: List[Change] = []
        visible: List[Change] = []
        failure: Optional[Exception] = None

        try:
            for path, value in pending.items():
                write_options = options.get(path, {})
                old = self._container.read(path)
                changed, new_signature = self._detector.detect(path, old, value)
                if not changed:
                    logging.debug(f"Skipped no-op write to '{path}'")
                    continue
                try:
                    self._container.write(path, value)
                except (PathStoreError, IndexError, TypeError, AttributeError) as e:
                    failure = failure or e
                    continue
                self._detector.record(path, value, new_signature)
                self._forget_ancestors(path)
                if write_options.get("record_history", True):
                    self._history.push(path, old, value)
                change = Change(path, old, value)
                changes.append(change)
                if not write_options.get("keep_quiet", False):
                    visible.append(change)
        finally:
            if visible:
                self._registry.dispatch(visible, self._read, self.state, forced)
        if failure is not None:
            raise failure
        return changes

    def _forget_ancestors(self, path: str) -> None:
        # ancestors were mutated in place; their identity signatures are stale
        parent = parent_path(path)
        while parent is not None:
            self._detector.forget(self._container.read(parent))
            parent = parent_path(parent)
        self._detector.forget(self._container.root)

    # ========================================================================
    # BATCHES
    # ========================================================================

    def batch(self, fn: Optional[Callable[[], Any]] = None, mode: BatchMode = BatchMode.USER) -> Any:
        """
        Group writes into one commit.

        - ``store.batch()`` returns a ``BatchContext`` for ``with`` or
          ``async with``.
        - ``store.batch(fn)`` runs ``fn`` inside a batch. When ``fn`` returns
          an awaitable (e.g. a coroutine function), a coroutine is returned
          that keeps the batch open until the awaitable finishes.

        A batch body that raises discards its own staged writes.
        """
        context = BatchContext(self._batches, mode)
        if fn is None:
            return context

        context.__enter__()
        try:
            result = fn()
        except BaseException:
            context.__exit__(*sys.exc_info())
            raise
        if inspect.isawaitable(result):
            return self._finish_batch(context, result)
        context.__exit__(None, None, None)
        return None

    async def _finish_batch(self, context: BatchContext, awaitable: Any) -> None:
        try:
            await awaitable
        except BaseException:
            context.__exit__(*sys.exc_info())
            raise
        context.__exit__(None, None, None)

    # ========================================================================
    # SUBSCRIPTIONS
    # ========================================================================

    def _normalize_keys(self, cache_keys: Any) -> Set[str]:
        if isinstance(cache_keys, str) or callable(cache_keys):
            cache_keys = [cache_keys]
        elif hasattr(cache_keys, "__store_path__"):
            cache_keys = [cache_keys]
        keys = {
            normalize_cache_key(key, self.state, self._interceptor.capture)
            for key in cache_keys
        }
        keys.discard("")
        return keys

    def subscribe(self, callback: Callable[[Any], None], cache_keys: Any = None) -> Subscription:
        """
        Subscribe to the whole state.

        ``callback(state)`` runs after every commit, or, with ``cache_keys``,
        only when a committed path or an invalidated key is one of them.
        Reads made through ``state`` inside the callback are recorded in
        ``subscription.tracked_paths``.
        """
        keys = None if cache_keys is None else self._normalize_keys(cache_keys)
        return self._registry.add_state_subscriber(callback, keys, self._unsubscribed)

    def subscribe_to_path(
        self,
        path: Any,
        callback: Callable[[Any], None],
        immediate: bool = False,
        cache_keys: Any = None,
    ) -> Subscription:
        """
        Subscribe to one path.

        ``callback(value)`` runs when the path, anything below it, or an
        ancestor whose replacement changes the value at the path commits.
        Extra ``cache_keys`` are matched exactly.
        """
        resolved = self.resolve_path(path)
        keys = () if cache_keys is None else self._normalize_keys(cache_keys)
        subscription = self._registry.add_path_subscriber(
            resolved, callback, keys, self._unsubscribed
        )
        if immediate:
            self._registry.run(subscription, self._read(resolved), resolved)
        return subscription

    def _unsubscribed(self, subscription: Subscription) -> None:
        self._registry.remove(subscription)
        path = subscription.path
        if (
            path is not None
            and path not in self._registry.subscribed_paths()
            and path not in self.config.history_limits
        ):
            self._history.clear(path)
            self._detector.forget_path(path)
        if self.config.prune_history_on_unsubscribe:
            self.prune_history()

    def invalidate(self, key: Any) -> None:
        """Notify subscribers interested in ``key`` without changing anything."""
        normalized = normalize_cache_key(key, self.state, self._interceptor.capture)
        if not normalized:
            raise InvalidPathError(f"Cannot invalidate an empty key ({key!r})")
        self._registry.invalidate(normalized, self._read, self.state)

    def invalidate_all(self) -> None:
        self._registry.invalidate_all(self._read, self.state)

    # ========================================================================
    # HISTORY
    # ========================================================================

    def undo(self, path: Any) -> bool:
        """Restore the previous value of ``path``; False if there is none."""
        resolved = self.resolve_path(path)
        if not self._history.can_undo(resolved):
            logging.debug(f"Nothing to undo at '{resolved}'")
            return False
        self._update(resolved, self._history.undo(resolved), record_history=False)
        return True

    def redo(self, path: Any) -> bool:
        """Re-apply the last undone value of ``path``; False if there is none."""
        resolved = self.resolve_path(path)
        if not self._history.can_redo(resolved):
            logging.debug(f"Nothing to redo at '{resolved}'")
            return False
        self._update(resolved, self._history.redo(resolved), record_history=False)
        return True

    def get_undo(self, path: Any, step: int = 1) -> Any:
        return self._history.get_undo(self.resolve_path(path), step)

    def get_redo(self, path: Any, step: int = 1) -> Any:
        return self._history.get_redo(self.resolve_path(path), step)

    def get_history(self, path: Any) -> Dict[str, List[Any]]:
        return self._history.get_history(self.resolve_path(path))

    def clear_history(self, path: Any = None) -> None:
        resolved = None if path is None else self.resolve_path(path)
        self._history.clear(resolved)
        self._detector.forget_path(resolved)

    def prune_history(self) -> List[str]:
        """Drop history of paths that no subscriber references."""
        active = (
            self._registry.subscribed_paths()
            | self._registry.tracked_paths()
            | set(self.config.history_limits)
        )
        dropped = self._history.prune_unused(active)
        for path in dropped:
            self._detector.forget_path(path)
        return dropped

    # ========================================================================
    # ASYNC UPDATES
    # ========================================================================

    async def async_update(
        self,
        path: Any,
        updater: Updater,
        *,
        abort_previous: bool = False,
        keep_quiet: bool = False,
    ) -> Any:
        """
        Await ``updater(current, token)`` and write its result.

        Returns the written value, or None when the update was aborted.
        Non-abort updater errors are reported to ``on_error`` and re-raised.
        """
        resolved = self.resolve_path(path)
        return await self._async.run(
            resolved,
            updater,
            lambda: self._read(resolved),
            lambda value: self._update(resolved, value, keep_quiet=keep_quiet),
            abort_previous=abort_previous,
        )

    def cancel_async_updates(self, path: Any = None) -> int:
        return self._async.cancel(None if path is None else self.resolve_path(path))

    def is_aborted(self, path: Any) -> bool:
        return self._async.is_aborted(self.resolve_path(path))

    def debounced(self, fn: Callable[..., Any], delay: float) -> Debounced:
        """Wrap ``fn`` so calls within ``delay`` seconds collapse into the last one."""
        return Debounced(fn, delay, self.config.on_error, scheduled=self._scheduled)

    # ========================================================================
    # DIAGNOSTICS AND LIFECYCLE
    # ========================================================================

    def get_memory_stats(self) -> Dict[str, Any]:
        entries = self._history.entries()
        return {
            **self._registry.stats(),
            "history_paths": len(entries),
            "history_entries": sum(entry["length"] + entry["redo_length"] for entry in entries),
            "history": entries,
            **self._async.stats(),
            "pending_debounced": len(self._scheduled),
            "batch_depth": self._batches.depth,
            **self._detector.stats(),
        }

    def close(self) -> None:
        """Cancel pending work and drop subscribers, history and signatures."""
        for debouncer in list(self._scheduled):
            debouncer.cancel()
        self._async.clear()
        self._registry.clear()
        self._history.clear()
        self._detector.clear()
        self._batches.clear()

    def __repr__(self) -> str:
        stats = self._registry.stats()
        return (
            f"ObservableStore(subscribers={stats['subscribers_count']}, "
            f"path_subscribers={stats['path_subscribers_count']})"
        )


def create_observable_store(
    initial_state: Any = None,
    middlewares: Optional[Iterable[Middleware]] = None,
    **options: Any,
) -> ObservableStore:
    """
    Build an ``ObservableStore``.

    ``options`` are ``StoreConfig`` fields (``max_history_length``,
    ``history_limits``, ...) or ``config=StoreConfig(...)``.
    """
    return ObservableStore(initial_state, middlewares, **options)
