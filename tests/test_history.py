"""Tests for the per-path undo/redo stacks."""

import logging

import pytest

from pathstore.history import HistoryManager


@pytest.fixture
def history():
    return HistoryManager(lambda path: 0 if path == "off" else 3)


class TestPush:
    def test_first_push_seeds_previous_value(self, history):
        assert history.push("x", 0, 1)
        assert history.get_history("x") == {"undo": [0, 1], "redo": []}

    def test_capacity_bounds_the_undo_stack(self, history):
        history.push("x", 0, 1)
        for value in range(2, 10):
            history.push("x", value - 1, value)
        assert history.get_history("x")["undo"] == [7, 8, 9]

    def test_zero_capacity_disables_history(self, history):
        assert not history.push("off", 0, 1)
        assert history.get_history("off") == {"undo": [], "redo": []}
        assert history.paths() == []

    def test_push_clears_redo(self, history):
        history.push("x", 0, 1)
        history.push("x", 1, 2)
        history.undo("x")
        assert history.can_redo("x")
        history.push("x", 1, 5)
        assert not history.can_redo("x")
        assert history.get_history("x")["undo"] == [0, 1, 5]


class TestUndoRedo:
    def test_undo_returns_the_value_to_restore(self, history):
        history.push("x", 0, 1)
        history.push("x", 1, 2)
        assert history.undo("x") == 1
        assert history.get_history("x") == {"undo": [0, 1], "redo": [2]}

    def test_redo_restores_the_undone_value(self, history):
        history.push("x", 0, 1)
        history.undo("x")
        assert history.redo("x") == 1
        assert history.get_history("x") == {"undo": [0, 1], "redo": []}

    def test_single_entry_cannot_be_undone(self, history):
        history.push("x", 0, 1)
        history.undo("x")
        assert not history.can_undo("x")
        assert history.undo("x") is None

    def test_nothing_to_redo(self, history):
        assert not history.can_redo("x")
        assert history.redo("x") is None

    def test_peeking_does_not_move(self, history):
        history.push("x", 0, 1)
        history.push("x", 1, 2)
        assert history.get_undo("x") == 1
        assert history.get_undo("x", step=2) == 0
        assert history.get_undo("x", step=3) is None
        history.undo("x")
        history.undo("x")
        assert history.get_redo("x") == 1
        assert history.get_redo("x", step=2) == 2
        assert history.get_redo("x", step=3) is None
        assert history.get_history("x") == {"undo": [0], "redo": [2, 1]}


class TestHousekeeping:
    def test_clear_one_path(self, history):
        history.push("x", 0, 1)
        history.push("y", 0, 1)
        history.clear("x")
        assert history.paths() == ["y"]

    def test_clear_all(self, history):
        history.push("x", 0, 1)
        history.clear()
        assert history.paths() == []

    def test_prune_unused(self, history, caplog):
        history.push("x", 0, 1)
        history.push("y", 0, 1)
        with caplog.at_level(logging.DEBUG):
            dropped = history.prune_unused({"y"})
        assert dropped == ["x"]
        assert history.paths() == ["y"]
        assert "Pruned history for 1 unused paths" in caplog.text

    def test_entries(self, history):
        history.push("x", 0, 1)
        history.undo("x")
        assert history.entries() == [
            {"path": "x", "length": 1, "redo_length": 1, "capacity": 3}
        ]
