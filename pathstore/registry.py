"""
Notification Registry
=====================

Two kinds of subscribers:

- **state subscribers** receive the root state proxy. Without cache keys they
  fire once per commit; with cache keys only when a committed path or an
  invalidated key is one of their keys.
- **path subscribers** receive the current value at their path. They fire
  when their path changes, when a path below it changes, and when an
  ancestor is replaced with a subtree whose value at their path differs.
  Extra cache keys are matched exactly.

Each subscription fires at most once per commit. Callback errors are handed
to the configured error handler and never stop delivery to the others.
"""

import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from .config import ErrorContext, ErrorHandler
from .container import DELETE, read_in
from .path import is_ancestor, relative_segments
from .signature import should_skip


@dataclass(frozen=True)
class Change:
    """A committed write."""

    path: str
    old_value: Any
    new_value: Any

    def __repr__(self) -> str:
        return f"Change({self.path}: {self.old_value!r} → {self.new_value!r})"


@dataclass(eq=False)
class Subscription:
    """
    Handle returned by ``subscribe``/``subscribe_to_path``.

    Calling the handle (or leaving its ``with`` block) unsubscribes.
    """

    callback: Callable[[Any], None]
    order: int
    path: Optional[str] = None
    cache_keys: Optional[FrozenSet[str]] = None
    tracked_paths: Set[str] = field(default_factory=set)
    active: bool = True
    _on_unsubscribe: Optional[Callable[["Subscription"], None]] = field(
        default=None, repr=False
    )

    @property
    def is_path_subscription(self) -> bool:
        return self.path is not None

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._on_unsubscribe is not None:
            self._on_unsubscribe(self)

    def __call__(self) -> None:
        self.unsubscribe()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unsubscribe()
        return False


def _as_new(value: Any) -> Any:
    return None if value is DELETE else value


class NotificationRegistry:
    """Subscriber bookkeeping and commit dispatch."""

    def __init__(self, on_error: ErrorHandler):
        self._on_error = on_error
        self._order = itertools.count()
        self._state_subscribers: List[Subscription] = []
        self._path_subscribers: Dict[str, List[Subscription]] = {}
        self.current: Optional[Subscription] = None

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def add_state_subscriber(
        self,
        callback: Callable[[Any], None],
        cache_keys: Optional[Iterable[str]],
        on_unsubscribe: Callable[[Subscription], None],
    ) -> Subscription:
        subscription = Subscription(
            callback=callback,
            order=next(self._order),
            cache_keys=None if cache_keys is None else frozenset(cache_keys),
            _on_unsubscribe=on_unsubscribe,
        )
        self._state_subscribers.append(subscription)
        return subscription

    def add_path_subscriber(
        self,
        path: str,
        callback: Callable[[Any], None],
        cache_keys: Iterable[str],
        on_unsubscribe: Callable[[Subscription], None],
    ) -> Subscription:
        keys = frozenset(key for key in cache_keys if key)
        subscription = Subscription(
            callback=callback,
            order=next(self._order),
            path=path,
            cache_keys=keys or None,
            tracked_paths={path, *keys},
            _on_unsubscribe=on_unsubscribe,
        )
        for key in subscription.tracked_paths:
            self._path_subscribers.setdefault(key, []).append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        if subscription.is_path_subscription:
            for key in subscription.tracked_paths:
                subscribers = self._path_subscribers.get(key)
                if subscribers is None:
                    continue
                if subscription in subscribers:
                    subscribers.remove(subscription)
                if not subscribers:
                    del self._path_subscribers[key]
        elif subscription in self._state_subscribers:
            self._state_subscribers.remove(subscription)

    def clear(self) -> None:
        for subscription in self._all_subscriptions():
            subscription.active = False
        self._state_subscribers.clear()
        self._path_subscribers.clear()

    # ========================================================================
    # QUERIES
    # ========================================================================

    def subscribed_paths(self) -> Set[str]:
        return set(self._path_subscribers)

    def tracked_paths(self) -> Set[str]:
        """Paths read by state subscribers on their latest run."""
        tracked: Set[str] = set()
        for subscription in self._state_subscribers:
            tracked.update(subscription.tracked_paths)
        return tracked

    def stats(self) -> Dict[str, int]:
        path_subscriptions = {
            id(s) for subs in self._path_subscribers.values() for s in subs
        }
        return {
            "subscribers_count": len(self._state_subscribers),
            "path_subscribers_count": len(path_subscriptions),
            "active_paths_count": len(self._path_subscribers),
        }

    def _all_subscriptions(self) -> List[Subscription]:
        seen: Dict[int, Subscription] = {s.order: s for s in self._state_subscribers}
        for subscribers in self._path_subscribers.values():
            for subscription in subscribers:
                seen[subscription.order] = subscription
        return [seen[order] for order in sorted(seen)]

    # ========================================================================
    # MATCHING
    # ========================================================================

    def _path_matches(self, changes: List[Change]) -> List[Subscription]:
        matched: Dict[int, Subscription] = {}
        for key, subscribers in self._path_subscribers.items():
            for change in changes:
                if key == change.path:
                    hit = subscribers
                elif is_ancestor(key, change.path):
                    # child change bubbles up to the subscriber's own path only
                    hit = [s for s in subscribers if s.path == key]
                elif is_ancestor(change.path, key):
                    rest = relative_segments(change.path, key)
                    old = read_in(_as_new(change.old_value), rest)
                    new = read_in(_as_new(change.new_value), rest)
                    if should_skip(old, new):
                        continue
                    hit = [s for s in subscribers if s.path == key]
                else:
                    continue
                for subscription in hit:
                    matched[subscription.order] = subscription
        return [matched[order] for order in sorted(matched)]

    # ========================================================================
    # DISPATCH
    # ========================================================================

    def run(self, subscription: Subscription, argument: Any, key: Optional[str]) -> None:
        if not subscription.active:
            return
        previous = self.current
        tracking = not subscription.is_path_subscription
        if tracking:
            subscription.tracked_paths.clear()
            self.current = subscription
        try:
            subscription.callback(argument)
        except Exception as e:
            self._on_error(
                e, ErrorContext("subscriber", key or subscription.path, subscription.callback)
            )
        finally:
            if tracking:
                self.current = previous

    def dispatch(
        self,
        changes: List[Change],
        read: Callable[[str], Any],
        state: Any,
        forced: Iterable[str] = (),
    ) -> None:
        """
        Notify subscribers of one commit.

        Whole-state subscribers go first (cacheless ones and keyed ones whose
        keys match), then path subscribers, each group in registration order.
        ``forced`` keys are re-notified as if invalidated, but only alongside
        a commit that changed something.
        """
        if not changes:
            return
        forced = set(forced)
        keys = {change.path for change in changes} | forced
        state_subscribers = [
            s
            for s in self._state_subscribers
            if s.cache_keys is None or s.cache_keys & keys
        ]
        matched = {s.order: s for s in self._path_matches(changes)}
        for key in forced:
            for subscription in self._path_subscribers.get(key, ()):
                matched[subscription.order] = subscription
        path_subscribers = [matched[order] for order in sorted(matched)]

        for subscription in state_subscribers:
            self.run(subscription, state, None)
        for subscription in path_subscribers:
            self.run(subscription, read(subscription.path), subscription.path)

    def invalidate(self, key: str, read: Callable[[str], Any], state: Any) -> None:
        """Notify subscribers interested in ``key`` without a value change."""
        for subscription in list(self._state_subscribers):
            if subscription.cache_keys is None or key in subscription.cache_keys:
                self.run(subscription, state, key)
        for subscription in list(self._path_subscribers.get(key, ())):
            self.run(subscription, read(subscription.path), subscription.path)

    def invalidate_all(self, read: Callable[[str], Any], state: Any) -> None:
        for subscription in self._all_subscriptions():
            if subscription.is_path_subscription:
                self.run(subscription, read(subscription.path), subscription.path)
            else:
                self.run(subscription, state, None)
