"""
Interception Layer
==================

``store.state`` is a tree of lightweight proxies. A proxy holds only the
store's interceptor and its own path; every access re-resolves the raw node,
so proxies never go stale and reads inside a batch see staged values.

- Reads made while a state subscriber runs are recorded in that
  subscription's ``tracked_paths``.
- Item/attribute writes funnel through ``store.update`` (staged when a batch
  is open) and also re-notify subscribers of the parent path.
- Mutating list methods run against a copy of the list inside an implicit
  system batch, producing one write of the list's own path.
- Deleting a key writes ``DELETE``.

Usage:
    s = store.state
    s.user.name = "Ada"          # update("user.name", "Ada")
    s.todos.append({"done": 0})  # one commit of "todos"
    del s.user.nickname          # update("user.nickname", DELETE)
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable, Iterator, List, Optional

from .batch import BatchMode
from .container import DELETE, is_node
from .exceptions import InvalidPathError, PathParseError
from .path import parent_path

if TYPE_CHECKING:
    from .store import ObservableStore


def child_path(path: str, key: Any) -> str:
    return f"{path}.{key}" if path else str(key)


def unwrap(value: Any) -> Any:
    """Raw value behind a proxy; other values are returned unchanged."""
    if isinstance(value, _NodeProxy):
        return value._ps_raw()
    return value


class Interceptor:
    """Routes proxy reads and writes into the store."""

    def __init__(self, store: "ObservableStore"):
        self._store = store
        self._capture: Optional[List[str]] = None

    # ========================================================================
    # READS
    # ========================================================================

    def track(self, path: str) -> None:
        subscription = self._store._registry.current
        if subscription is not None:
            subscription.tracked_paths.add(path)
        if self._capture is not None:
            self._capture.append(path)

    def raw(self, path: str) -> Any:
        return self._store._read(path)

    def read(self, path: str) -> Any:
        self.track(path)
        return self._store._read(path)

    def wrap(self, path: str, value: Any) -> Any:
        if isinstance(value, list):
            return ListProxy(self, path)
        if is_node(value) and not isinstance(value, tuple):
            return StateProxy(self, path)
        return value

    def capture(self, accessor: Callable[[], Any]) -> str:
        """Resolve a zero-argument accessor to the last path it read."""
        previous = self._capture
        self._capture = []
        try:
            accessor()
            captured = self._capture
        except Exception as e:
            raise PathParseError(f"Accessor {accessor!r} could not be evaluated: {e}") from e
        finally:
            self._capture = previous
        if not captured:
            raise PathParseError(f"Accessor {accessor!r} did not read from the store")
        return captured[-1]

    # ========================================================================
    # WRITES
    # ========================================================================

    def write(self, path: str, value: Any) -> None:
        parent = parent_path(path)
        self._store.update(
            path,
            unwrap(value),
            invalidate=() if parent is None else (parent,),
        )

    def delete(self, path: str) -> None:
        self._store.update(path, DELETE)

    def mutate_list(self, path: str, method: str, *args: Any, **kwargs: Any) -> Any:
        store = self._store
        with store.batch(mode=BatchMode.SYSTEM):
            current = store._read(path)
            working = [] if current is None else list(current)
            result = getattr(working, method)(*[unwrap(arg) for arg in args], **kwargs)
            store.update(path, working, invalidate=(path,))
        return result


class _NodeProxy:
    __slots__ = ("_ps_interceptor", "_ps_path")

    def __init__(self, interceptor: Interceptor, path: str):
        object.__setattr__(self, "_ps_interceptor", interceptor)
        object.__setattr__(self, "_ps_path", path)

    def _ps_raw(self) -> Any:
        return self._ps_interceptor.raw(self._ps_path)

    def _ps_child(self, key: Any) -> Any:
        interceptor = self._ps_interceptor
        path = child_path(self._ps_path, key)
        value = interceptor.read(path)
        if value is not None and value is self._ps_raw():
            return self
        return interceptor.wrap(path, value)

    @property
    def __store_path__(self) -> str:
        if not self._ps_path:
            raise InvalidPathError("The root proxy does not name a path")
        return self._ps_path

    def __eq__(self, other: Any) -> bool:
        return self._ps_raw() == unwrap(other)

    __hash__ = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._ps_path!r}, {self._ps_raw()!r})"


class StateProxy(_NodeProxy):
    """Proxy for mappings and attribute objects."""

    __slots__ = ()

    def _ps_keys(self) -> List[Any]:
        raw = self._ps_raw()
        if isinstance(raw, Mapping):
            return list(raw.keys())
        if raw is None:
            return []
        if hasattr(raw, "__dict__"):
            return [k for k in vars(raw) if not k.startswith("_")]
        return [k for k in getattr(type(raw), "__slots__", ()) if hasattr(raw, k)]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)
        raw = self._ps_raw()
        present = name in raw if isinstance(raw, Mapping) else hasattr(raw, name)
        if not present:
            self._ps_interceptor.track(child_path(self._ps_path, name))
            raise AttributeError(f"{self._ps_path or 'state'!s} has no key {name!r}")
        return self._ps_child(name)

    def __setattr__(self, name: str, value: Any) -> None:
        self._ps_interceptor.write(child_path(self._ps_path, name), value)

    def __delattr__(self, name: str) -> None:
        self._ps_interceptor.delete(child_path(self._ps_path, name))

    def __getitem__(self, key: Any) -> Any:
        return self._ps_child(key)

    def __setitem__(self, key: Any, value: Any) -> None:
        self._ps_interceptor.write(child_path(self._ps_path, key), value)

    def __delitem__(self, key: Any) -> None:
        self._ps_interceptor.delete(child_path(self._ps_path, key))

    def __iter__(self) -> Iterator[Any]:
        keys = self._ps_keys()
        for key in keys:
            self._ps_interceptor.track(child_path(self._ps_path, key))
        return iter(keys)

    def __len__(self) -> int:
        return len(list(iter(self)))

    def __contains__(self, key: Any) -> bool:
        return key in self._ps_keys()

    def keys(self) -> List[Any]:
        return list(iter(self))

    def values(self) -> List[Any]:
        return [self._ps_child(key) for key in self.keys()]

    def items(self) -> List[tuple]:
        return [(key, self._ps_child(key)) for key in self.keys()]

    def get(self, key: Any, default: Any = None) -> Any:
        value = self._ps_child(key)
        return default if value is None else value

    def update(self, other: Any = (), **kwargs: Any) -> None:
        pairs = dict(other, **kwargs)
        for key, value in pairs.items():
            self[key] = value


class ListProxy(_NodeProxy):
    """Proxy for lists; mutating methods commit the whole list once."""

    __slots__ = ()

    def _ps_index(self, index: int) -> int:
        if index < 0:
            index += len(self._ps_raw() or ())
        return index

    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, slice):
            self._ps_interceptor.track(self._ps_path)
            return list(self._ps_raw() or ())[index]
        return self._ps_child(self._ps_index(index))

    def __setitem__(self, index: Any, value: Any) -> None:
        if isinstance(index, slice):
            self._ps_interceptor.mutate_list(self._ps_path, "__setitem__", index, list(value))
        else:
            self._ps_interceptor.write(
                child_path(self._ps_path, self._ps_index(index)), value
            )

    def __delitem__(self, index: Any) -> None:
        self._ps_interceptor.mutate_list(self._ps_path, "__delitem__", index)

    def __len__(self) -> int:
        self._ps_interceptor.track(self._ps_path)
        return len(self._ps_raw() or ())

    def __iter__(self) -> Iterator[Any]:
        for index in range(len(self)):
            yield self._ps_child(index)

    def __contains__(self, item: Any) -> bool:
        self._ps_interceptor.track(self._ps_path)
        return unwrap(item) in (self._ps_raw() or ())

    def __iadd__(self, other: Any) -> "ListProxy":
        self.extend(other)
        return self

    def index(self, item: Any, *args: Any) -> int:
        self._ps_interceptor.track(self._ps_path)
        return list(self._ps_raw() or ()).index(unwrap(item), *args)

    def count(self, item: Any) -> int:
        self._ps_interceptor.track(self._ps_path)
        return list(self._ps_raw() or ()).count(unwrap(item))

    def append(self, item: Any) -> None:
        self._ps_interceptor.mutate_list(self._ps_path, "append", item)

    def extend(self, items: Any) -> None:
        self._ps_interceptor.mutate_list(
            self._ps_path, "extend", [unwrap(item) for item in items]
        )

    def insert(self, index: int, item: Any) -> None:
        self._ps_interceptor.mutate_list(self._ps_path, "insert", index, item)

    def pop(self, index: int = -1) -> Any:
        return self._ps_interceptor.mutate_list(self._ps_path, "pop", index)

    def remove(self, item: Any) -> None:
        self._ps_interceptor.mutate_list(self._ps_path, "remove", item)

    def clear(self) -> None:
        self._ps_interceptor.mutate_list(self._ps_path, "clear")

    def reverse(self) -> None:
        self._ps_interceptor.mutate_list(self._ps_path, "reverse")

    def sort(self, *, key: Optional[Callable] = None, reverse: bool = False) -> None:
        self._ps_interceptor.mutate_list(
            self._ps_path, "sort", key=key, reverse=reverse
        )
