"""
State Container - owns the raw state tree and walks paths through it.

Nodes may be mappings, lists/tuples, or plain objects (dataclasses and the
like, addressed by attribute). Strings and bytes are leaves.
"""

from collections.abc import Mapping, MutableMapping
from typing import Any, Optional

from .exceptions import IntermediateUndefinedError
from .path import Segment, Segments, join_path, split_path


class _Delete:
    """Sentinel: writing it removes the key instead of storing a value."""

    __slots__ = ()
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE"

    def __bool__(self) -> bool:
        return False


DELETE = _Delete()

_LEAF_TYPES = (str, bytes, bytearray, int, float, complex, bool, type(None))


def is_node(value: Any) -> bool:
    """True for values that have addressable children."""
    if value is DELETE or isinstance(value, _LEAF_TYPES) or callable(value):
        return False
    return (
        isinstance(value, (Mapping, list, tuple))
        or hasattr(value, "__dict__")
        or hasattr(value, "__slots__")
    )


def _mapping_key(node: Mapping, segment: Segment) -> Any:
    # new integer-looking keys are stored as strings
    return segment if segment in node else str(segment)


def get_child(node: Any, segment: Segment) -> Any:
    """Child of ``node`` at ``segment``, or None when absent."""
    if node is None or isinstance(node, _LEAF_TYPES):
        return None
    if isinstance(node, Mapping):
        if segment in node:
            return node[segment]
        if isinstance(segment, int):
            return node.get(str(segment))
        return None
    if isinstance(node, (list, tuple)):
        if isinstance(segment, int) and segment < len(node):
            return node[segment]
        return None
    if isinstance(segment, str):
        return getattr(node, segment, None)
    return None


def read_in(node: Any, segments: Segments) -> Any:
    for segment in segments:
        node = get_child(node, segment)
        if node is None:
            return None
    return node


def set_child(node: Any, segment: Segment, value: Any) -> None:
    """Assign (or remove, for ``DELETE``) ``node[segment]``."""
    if isinstance(node, MutableMapping):
        key = _mapping_key(node, segment)
        if value is DELETE:
            node.pop(key, None)
        else:
            node[key] = value
    elif isinstance(node, list):
        if not isinstance(segment, int):
            raise TypeError(f"List index must be an integer, got {segment!r}")
        if value is DELETE:
            if segment < len(node):
                del node[segment]
        elif segment == len(node):
            node.append(value)
        elif segment > len(node):
            raise IndexError(
                f"List index {segment} out of range for length {len(node)}"
            )
        else:
            node[segment] = value
    elif isinstance(node, (tuple, Mapping)) or isinstance(node, _LEAF_TYPES):
        raise TypeError(f"Cannot assign into immutable {type(node).__name__}")
    elif value is DELETE:
        if hasattr(node, str(segment)):
            delattr(node, str(segment))
    else:
        setattr(node, str(segment), value)


def write_in(root: Any, path: str, value: Any) -> None:
    segments = split_path(path)
    node = root
    for index, segment in enumerate(segments[:-1]):
        node = get_child(node, segment)
        if node is None:
            raise IntermediateUndefinedError(path, join_path(segments[: index + 1]))
    set_child(node, segments[-1], value)


class StateContainer:
    """Holds the root of the state tree."""

    def __init__(self, initial_state: Optional[Any] = None):
        self._root = {} if initial_state is None else initial_state

    @property
    def root(self) -> Any:
        return self._root

    def read(self, path: str) -> Any:
        """Value at ``path`` or None when any segment is missing."""
        return read_in(self._root, split_path(path))

    def write(self, path: str, value: Any) -> None:
        """
        Assign ``value`` at ``path``.

        Raises:
            IntermediateUndefinedError: If the parent of ``path`` does not exist.
        """
        write_in(self._root, path, value)

    def replace(self, new_root: Any) -> None:
        self._root = {} if new_root is None else new_root
