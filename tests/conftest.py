"""
Shared pytest fixtures for pathstore tests.
"""

from unittest.mock import Mock

import pytest

from pathstore import create_observable_store


def initial_state():
    return {
        "counter": 0,
        "user": {"name": "Ada", "age": 36, "tags": ["math"]},
        "todos": [],
        "a": {"b": {"c": 1}, "d": 2},
        "x": 0,
        "y": 0,
    }


@pytest.fixture
def store():
    """A fresh store over a small nested state tree."""
    return create_observable_store(initial_state())


@pytest.fixture
def on_error():
    """Error handler mock for stores built with ``on_error=``."""
    return Mock()


@pytest.fixture
def reporting_store(on_error):
    """A store whose failures are reported to the ``on_error`` mock."""
    return create_observable_store(initial_state(), on_error=on_error)
