"""Tests for whole-state and path subscriptions, invalidation and dispatch order."""

import logging
from unittest.mock import Mock

from pathstore import ErrorContext, Subscription


class TestPathSubscriptions:
    """Path subscribers see their own path, its subtree and ancestor replacements."""

    def test_exact_path(self, store):
        callback = Mock()
        store.subscribe_to_path("counter", callback)
        store.update("counter", 1)
        callback.assert_called_once_with(1)

    def test_child_change_bubbles_up(self, store):
        callback = Mock()
        store.subscribe_to_path("a.b", callback)
        store.update("a.b.c", 2)
        callback.assert_called_once_with({"c": 2})

    def test_sibling_change_is_ignored(self, store):
        callback = Mock()
        store.subscribe_to_path("a.b", callback)
        store.update("a.d", 3)
        callback.assert_not_called()

    def test_ancestor_replacement(self, store):
        callback = Mock()
        store.subscribe_to_path("a.b", callback)
        store.update("a", {"b": {"c": 5}, "d": 2})
        callback.assert_called_once_with({"c": 5})

    def test_ancestor_replacement_with_same_subtree(self, store):
        callback = Mock()
        store.subscribe_to_path("a.b", callback)
        store.update("a", {"b": {"c": 1}, "d": 99})
        callback.assert_not_called()

    def test_ancestor_deletion(self, store):
        callback = Mock()
        store.subscribe_to_path("a.b.c", callback)
        store.delete("a")
        callback.assert_called_once_with(None)

    def test_accessor_path(self, store):
        callback = Mock()
        store.subscribe_to_path(lambda s: s.user.name, callback)
        store.update("user.name", "Grace")
        callback.assert_called_once_with("Grace")

    def test_immediate(self, store):
        callback = Mock()
        store.subscribe_to_path("user.name", callback, immediate=True)
        callback.assert_called_once_with("Ada")

    def test_extra_cache_keys_are_matched_exactly(self, store):
        callback = Mock()
        store.subscribe_to_path("a.b", callback, cache_keys=["counter"])
        store.update("counter", 1)
        callback.assert_called_once_with({"c": 1})

    def test_unsubscribe(self, store):
        callback = Mock()
        subscription = store.subscribe_to_path("counter", callback)
        assert isinstance(subscription, Subscription)
        subscription()
        store.update("counter", 1)
        callback.assert_not_called()
        assert not subscription.active

    def test_scoped_subscription(self, store):
        callback = Mock()
        with store.subscribe_to_path("counter", callback) as subscription:
            store.update("counter", 1)
        store.update("counter", 2)
        callback.assert_called_once_with(1)
        assert not subscription.active

    def test_unsubscribe_clears_path_history(self, store):
        subscription = store.subscribe_to_path("counter", Mock())
        store.update("counter", 1)
        assert store.get_history("counter")["undo"] == [0, 1]
        subscription.unsubscribe()
        assert store.get_history("counter")["undo"] == []


class TestStateSubscriptions:
    """Whole-state subscribers, with and without cache keys."""

    def test_fires_once_per_commit_with_state(self, store):
        seen = []
        store.subscribe(lambda state: seen.append(state.counter))
        store.update("counter", 1)
        store.update("user.name", "Grace")
        assert seen == [1, 1]

    def test_reads_are_tracked(self, store):
        subscription = store.subscribe(lambda state: state.user.name)
        store.update("counter", 1)
        assert subscription.tracked_paths == {"user", "user.name"}

    def test_tracking_is_rebuilt_on_every_run(self, store):
        reads = iter(["counter", "x"])
        subscription = store.subscribe(lambda state: state[next(reads)])
        store.update("y", 1)
        assert subscription.tracked_paths == {"counter"}
        store.update("y", 2)
        assert subscription.tracked_paths == {"x"}

    def test_cache_keys_filter(self, store):
        callback = Mock()
        store.subscribe(callback, cache_keys=["counter", lambda s: s.user.name])
        store.update("user.age", 40)
        callback.assert_not_called()
        store.update("user.name", "Grace")
        store.update("counter", 1)
        assert callback.call_count == 2

    def test_single_key(self, store):
        callback = Mock()
        store.subscribe(callback, cache_keys="counter")
        store.update("counter", 1)
        callback.assert_called_once()

    def test_empty_cache_keys_never_match_commits(self, store):
        callback = Mock()
        store.subscribe(callback, cache_keys=[])
        store.update("counter", 1)
        callback.assert_not_called()

    def test_no_op_write_does_not_notify(self, store):
        callback = Mock()
        store.subscribe(callback)
        store.update("counter", 0)
        callback.assert_not_called()


class TestInvalidation:
    def test_invalidate_key(self, store):
        keyed, cacheless, other, path = Mock(), Mock(), Mock(), Mock()
        store.subscribe(keyed, cache_keys=["todos:list"])
        store.subscribe(cacheless)
        store.subscribe(other, cache_keys=["elsewhere"])
        store.subscribe_to_path("todos", path, cache_keys=["todos:list"])

        store.invalidate("todos:list")

        keyed.assert_called_once()
        cacheless.assert_called_once()
        other.assert_not_called()
        path.assert_called_once_with([])

    def test_invalidate_path(self, store):
        callback = Mock()
        store.subscribe_to_path("user.name", callback)
        store.invalidate(lambda s: s.user.name)
        callback.assert_called_once_with("Ada")

    def test_invalidate_all(self, store):
        state_cb, path_cb = Mock(), Mock()
        store.subscribe(state_cb, cache_keys=["nothing"])
        store.subscribe_to_path("counter", path_cb)
        store.invalidate_all()
        state_cb.assert_called_once()
        path_cb.assert_called_once_with(0)


class TestDispatch:
    def test_state_subscribers_run_before_path_subscribers(self, store):
        order = []
        store.subscribe_to_path("counter", lambda v: order.append("path"))
        store.subscribe(lambda s: order.append("state"))
        store.update("counter", 1)
        assert order == ["state", "path"]

    def test_order_state_groups_then_path(self, store):
        order = []
        store.subscribe(lambda s: order.append("cacheless"))
        store.subscribe_to_path("counter", lambda v: order.append("path"))
        store.subscribe(lambda s: order.append("keyed"), cache_keys=["counter"])
        store.update("counter", 1)
        assert order == ["cacheless", "keyed", "path"]

    def test_registration_order_within_group(self, store):
        order = []
        store.subscribe_to_path("a.b.c", lambda v: order.append("deep"))
        store.subscribe_to_path("a", lambda v: order.append("top"))
        store.update("a.b.c", 7)
        assert order == ["deep", "top"]

    def test_each_subscription_fires_once_per_commit(self, store):
        callback = Mock()
        store.subscribe_to_path("a", callback, cache_keys=["a.b"])
        with store.batch():
            store.update("a.b.c", 2)
            store.update("a.d", 3)
            store.update("a.b", {"c": 4})
        callback.assert_called_once_with({"b": {"c": 4}, "d": 3})

    def test_subscriber_errors_are_isolated(self, reporting_store, on_error):
        after = Mock()

        def broken(value):
            raise RuntimeError("subscriber failed")

        reporting_store.subscribe_to_path("counter", broken)
        reporting_store.subscribe_to_path("counter", after)
        reporting_store.update("counter", 1)

        after.assert_called_once_with(1)
        error, context = on_error.call_args[0]
        assert isinstance(error, RuntimeError)
        assert context == ErrorContext("subscriber", "counter", broken)

    def test_default_handler_logs(self, store, caplog):
        def broken(state):
            raise ValueError("bad subscriber")

        store.subscribe(broken)
        with caplog.at_level(logging.ERROR):
            store.update("counter", 1)
        assert "Error in subscriber" in caplog.text
        assert "bad subscriber" in caplog.text
        assert store.get("counter") == 1

    def test_memory_stats_count_subscribers(self, store):
        store.subscribe(Mock())
        store.subscribe_to_path("a", Mock(), cache_keys=["k"])
        stats = store.get_memory_stats()
        assert stats["subscribers_count"] == 1
        assert stats["path_subscribers_count"] == 1
        assert stats["active_paths_count"] == 2
