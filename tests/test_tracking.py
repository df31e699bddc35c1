"""Tests for the state proxies: tracked reads, intercepted writes and list methods."""

from unittest.mock import Mock

import pytest

from pathstore import ListProxy, StateProxy, create_observable_store, unwrap
from pathstore.exceptions import InvalidPathError


class TestProxyReads:
    def test_nested_reads(self, store):
        assert store.state.user.name == "Ada"
        assert store.state["user"]["age"] == 36
        assert store.s.a.b.c == 1

    def test_node_types(self, store):
        assert isinstance(store.state.user, StateProxy)
        assert isinstance(store.state.todos, ListProxy)

    def test_proxy_equality_compares_raw_values(self, store):
        assert store.state.user == {"name": "Ada", "age": 36, "tags": ["math"]}
        assert store.state.user.tags == ["math"]
        assert unwrap(store.state.user) is store.get_raw_store()["user"]

    def test_missing_key(self, store):
        with pytest.raises(AttributeError):
            store.state.user.nickname
        assert store.state.user.get("nickname", "none") == "none"

    def test_mapping_helpers(self, store):
        user = store.state.user
        assert list(user) == ["name", "age", "tags"]
        assert "name" in user
        assert len(user) == 3
        assert dict(user.items())["name"] == "Ada"

    def test_proxies_do_not_go_stale(self, store):
        user = store.state.user
        store.update("user", {"name": "Grace"})
        assert user.name == "Grace"

    def test_self_reference_returns_the_same_proxy(self):
        node = {"label": "loop"}
        node["me"] = node
        store = create_observable_store({"node": node})
        proxy = store.state.node
        assert proxy.me is proxy

    def test_dataclass_nodes(self):
        from dataclasses import dataclass

        @dataclass
        class Profile:
            name: str

        store = create_observable_store({"profile": Profile("Ada")})
        assert store.state.profile.name == "Ada"
        store.state.profile.name = "Grace"
        assert store.get("profile.name") == "Grace"


class TestProxyWrites:
    def test_attribute_assignment(self, store):
        store.state.user.name = "Grace"
        assert store.get("user.name") == "Grace"

    def test_item_assignment(self, store):
        store.state["user"]["age"] = 37
        assert store.get("user.age") == 37

    def test_write_renotifies_the_parent_key(self, store):
        keyed = Mock()
        parent = Mock()
        store.subscribe(keyed, cache_keys=["user"])
        store.subscribe_to_path("user", parent)
        store.state.user.name = "Grace"
        keyed.assert_called_once()
        parent.assert_called_once()

    def test_no_op_assignment_does_not_notify(self, store):
        callback = Mock()
        store.subscribe(callback)
        store.state.user.name = "Ada"
        callback.assert_not_called()

    def test_deletion(self, store):
        callback = Mock()
        store.subscribe_to_path("user", callback)
        del store.state.user.age
        assert "age" not in store.get("user")
        callback.assert_called_once()

    def test_assigning_a_proxy_stores_the_raw_value(self, store):
        store.state.copy = store.state.a
        assert store.get_raw_store()["copy"] is store.get_raw_store()["a"]

    def test_mapping_update(self, store):
        callback = Mock()
        store.subscribe(callback)
        with store.batch():
            store.state.user.update({"name": "Grace"}, age=50)
        assert store.get("user.name") == "Grace"
        assert store.get("user.age") == 50
        callback.assert_called_once()


class TestListMethods:
    """Mutating list methods commit the list path once, copy-on-write."""

    def test_append_commits_once(self, store):
        callback = Mock()
        store.subscribe_to_path("todos", callback)
        store.state.todos.append({"title": "write tests"})
        assert store.get("todos") == [{"title": "write tests"}]
        callback.assert_called_once_with([{"title": "write tests"}])

    def test_history_keeps_previous_lists(self, store):
        store.state.todos.append(1)
        store.state.todos.append(2)
        assert store.get_history("todos")["undo"] == [[], [1], [1, 2]]
        store.undo("todos")
        assert store.get("todos") == [1]

    def test_pop_returns_the_item(self, store):
        store.update("todos", [1, 2, 3])
        assert store.state.todos.pop() == 3
        assert store.state.todos.pop(0) == 1
        assert store.get("todos") == [2]

    def test_pop_from_empty_list_raises_and_discards(self, store):
        with pytest.raises(IndexError):
            store.state.todos.pop()
        assert store.get_memory_stats()["batch_depth"] == 0

    def test_reordering(self, store):
        store.update("todos", [3, 1, 2])
        todos = store.state.todos
        todos.sort()
        assert store.get("todos") == [1, 2, 3]
        todos.sort(key=lambda n: -n)
        assert store.get("todos") == [3, 2, 1]
        todos.reverse()
        assert store.get("todos") == [1, 2, 3]

    def test_other_mutators(self, store):
        todos = store.state.todos
        todos.extend([1, 2, 3])
        todos.insert(0, 0)
        todos.remove(2)
        del todos[0]
        todos[0:1] = ["a", "b"]
        assert store.get("todos") == ["a", "b", 3]
        todos.clear()
        assert store.get("todos") == []

    def test_in_place_add(self, store):
        callback = Mock()
        store.subscribe_to_path("todos", callback)
        state = store.state
        state.todos += [4, 5]
        assert store.get("todos") == [4, 5]
        callback.assert_called_once_with([4, 5])

    def test_element_assignment(self, store):
        store.update("todos", ["a", "b"])
        store.state.todos[-1] = "z"
        assert store.get("todos") == ["a", "z"]

    def test_read_helpers(self, store):
        store.update("todos", ["a", "b", "a"])
        todos = store.state.todos
        assert len(todos) == 3
        assert todos[1] == "b"
        assert todos[-1] == "a"
        assert todos[0:2] == ["a", "b"]
        assert "b" in todos
        assert todos.index("b") == 1
        assert todos.count("a") == 2
        assert list(todos) == ["a", "b", "a"]

    def test_methods_inside_a_user_batch(self, store):
        callback = Mock()
        store.subscribe_to_path("todos", callback)
        with store.batch():
            store.state.todos.append(1)
            store.state.todos.append(2)
            assert store.get("todos") == [1, 2]
        callback.assert_called_once_with([1, 2])

    def test_list_reads_are_tracked(self, store):
        subscription = store.subscribe(lambda state: len(state.todos))
        store.update("counter", 1)
        assert "todos" in subscription.tracked_paths


class TestProxyPaths:
    def test_proxy_names_its_path(self, store):
        assert store.resolve_path(store.state.user) == "user"
        assert store.get(store.state.a.b) == {"c": 1}

    def test_root_proxy_is_not_a_path(self, store):
        with pytest.raises(InvalidPathError):
            store.resolve_path(store.state)

    def test_zero_argument_accessor(self, store):
        assert store.resolve_path(lambda: store.state.user.name) == "user.name"
        store.update(lambda: store.state.counter, 5)
        assert store.get("counter") == 5
