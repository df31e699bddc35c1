"""
Change Detection via Content Signatures
=======================================

The state tree is mutated in place, so reference equality cannot tell a real
change from a re-applied value. Instead every candidate write is reduced to a
signature: the value is serialized depth-first into canonical text and folded
through a 32-bit multiply/XOR rolling hash.

- Mapping keys and set members are sorted, so equal containers hash equally
  regardless of insertion order.
- A back-reference to a container already on the current serialization path
  becomes the ``"__cycle__"`` token.
- Values that cannot be serialized make ``signature()`` return ``False``,
  which callers treat as "assume changed".

``ChangeDetector`` remembers the signature of every committed container by
identity (bounded LRU) so that a container mutated in place and written back
to the same path is still seen as changed.
"""

import dataclasses
import datetime
import enum
import numbers
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import numpy as np
from cachetools import LRUCache

from .container import DELETE

CYCLE_TOKEN = "__cycle__"

_HASH_SEED = 5381
_HASH_MASK = 0xFFFFFFFF

Signature = Union[str, bool]

_PRIMITIVES = (str, bytes, int, float, complex, bool, type(None), np.generic)


# ============================================================================
# SERIALIZATION
# ============================================================================


def _serialize(value: Any, out: List[str], ancestors: Set[int]) -> None:
    if value is None:
        out.append("null")
    elif value is DELETE:
        out.append("__delete__")
    elif isinstance(value, bool):
        out.append("true" if value else "false")
    elif isinstance(value, int):
        out.append(f"i:{value}")
    elif isinstance(value, float):
        out.append(f"f:{value!r}")
    elif isinstance(value, complex):
        out.append(f"c:{value!r}")
    elif isinstance(value, str):
        out.append(f"s:{len(value)}:{value}")
    elif isinstance(value, (bytes, bytearray)):
        out.append(f"b:{bytes(value).hex()}")
    elif isinstance(value, np.generic):
        _serialize(value.item(), out, ancestors)
    elif isinstance(value, (datetime.date, datetime.time, datetime.timedelta)):
        out.append(f"dt:{type(value).__name__}:{value}")
    elif isinstance(value, enum.Enum):
        out.append(f"enum:{type(value).__qualname__}.{value.name}")
    elif isinstance(value, numbers.Number):
        out.append(f"n:{type(value).__qualname__}:{value!r}")
    elif isinstance(value, type) or (callable(value) and not hasattr(value, "__dict__")):
        out.append(f"__func__:{getattr(value, '__qualname__', type(value).__name__)}")
    elif callable(value) and hasattr(value, "__code__"):
        out.append(f"__func__:{value.__module__}.{value.__qualname__}")
    else:
        _serialize_container(value, out, ancestors)


def _serialize_container(value: Any, out: List[str], ancestors: Set[int]) -> None:
    marker = id(value)
    if marker in ancestors:
        out.append(CYCLE_TOKEN)
        return
    ancestors.add(marker)
    try:
        if isinstance(value, np.ndarray):
            out.append(f"nd:{value.dtype.str}:{value.shape}:")
            if value.dtype.hasobject:
                _serialize(value.tolist(), out, ancestors)
            else:
                out.append(np.ascontiguousarray(value).tobytes().hex())
        elif isinstance(value, Mapping):
            items = []
            for key, item in value.items():
                key_text: List[str] = []
                _serialize(key, key_text, ancestors)
                item_text: List[str] = []
                _serialize(item, item_text, ancestors)
                items.append(("".join(key_text), "".join(item_text)))
            items.sort()
            out.append("{")
            out.append(",".join(f"{k}={v}" for k, v in items))
            out.append("}")
        elif isinstance(value, (list, tuple)):
            out.append("[" if isinstance(value, list) else "(")
            for index, item in enumerate(value):
                if index:
                    out.append(",")
                _serialize(item, out, ancestors)
            out.append("]" if isinstance(value, list) else ")")
        elif isinstance(value, (set, frozenset)):
            members = []
            for item in value:
                item_text: List[str] = []
                _serialize(item, item_text, ancestors)
                members.append("".join(item_text))
            out.append("<" + ",".join(sorted(members)) + ">")
        elif dataclasses.is_dataclass(value):
            out.append(f"dc:{type(value).__qualname__}(")
            for f in dataclasses.fields(value):
                out.append(f"{f.name}=")
                _serialize(getattr(value, f.name), out, ancestors)
                out.append(";")
            out.append(")")
        elif hasattr(value, "__dict__"):
            out.append(f"obj:{type(value).__qualname__}")
            _serialize(vars(value), out, ancestors)
        elif hasattr(type(value), "__slots__"):
            out.append(f"slots:{type(value).__qualname__}(")
            for name in type(value).__slots__:
                if hasattr(value, name):
                    out.append(f"{name}=")
                    _serialize(getattr(value, name), out, ancestors)
                    out.append(";")
            out.append(")")
        else:
            raise TypeError(f"Cannot serialize {type(value).__name__}")
    finally:
        ancestors.discard(marker)


def safe_serialize(value: Any) -> str:
    """Canonical text for ``value``. Raises TypeError on unsupported values."""
    out: List[str] = []
    _serialize(value, out, set())
    return "".join(out)


def fast_deep_hash(text: str) -> str:
    """Fold text through the 33-multiply/XOR rolling hash, as 8 hex digits."""
    h = _HASH_SEED
    for char in text:
        h = ((h * 33) ^ ord(char)) & _HASH_MASK
    return f"{h:08x}"


def signature(value: Any) -> Signature:
    """
    Content signature of ``value``.

    Returns:
        Hex string, or False when the value cannot be serialized (callers
        must then assume the value changed).
    """
    try:
        return fast_deep_hash(safe_serialize(value))
    except (TypeError, ValueError, RecursionError):
        return False


# ============================================================================
# COMPARISON
# ============================================================================


def is_trackable(value: Any) -> bool:
    """Complex values that qualify for signature tracking."""
    if isinstance(value, (Mapping, list, tuple, set, frozenset, np.ndarray)):
        return True
    if callable(value) or isinstance(value, (type, enum.Enum)):
        return False
    return dataclasses.is_dataclass(value) or hasattr(value, "__dict__")


def shallow_equal(a: Any, b: Any) -> bool:
    """Same type and equal, comparing container members by identity."""
    if a is b:
        return True
    if a is None or b is None or type(a) is not type(b):
        return False
    if isinstance(a, np.ndarray):
        return a.shape == b.shape and bool(np.array_equal(a, b))
    if isinstance(a, Mapping):
        if a.keys() != b.keys():
            return False
        return all(a[key] is b[key] for key in a)
    if isinstance(a, (list, tuple)):
        return len(a) == len(b) and all(x is y for x, y in zip(a, b))
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        return False


def should_skip(old: Any, new: Any) -> bool:
    """True when writing ``new`` over ``old`` would not change anything."""
    if is_trackable(old) and is_trackable(new):
        new_signature = signature(new)
        if new_signature is False:
            return False
        old_signature = signature(old)
        return old_signature is not False and old_signature == new_signature
    return shallow_equal(old, new)


# ============================================================================
# CHANGE DETECTOR
# ============================================================================


class ChangeDetector:
    """
    Decides whether a candidate write is a no-op.

    Container signatures are remembered by object identity, primitives by
    path. The identity cache holds a reference to each value so an ``id()``
    is never reused while its entry is alive. Both caches are bounded LRUs.
    """

    def __init__(self, cache_size: int = 10000):
        self._by_identity: LRUCache = LRUCache(maxsize=cache_size)
        self._by_path: LRUCache = LRUCache(maxsize=cache_size)

    def recorded(self, value: Any) -> Optional[Signature]:
        entry = self._by_identity.get(id(value))
        if entry is not None and entry[0] is value:
            return entry[1]
        return None

    def detect(self, path: str, old: Any, new: Any) -> Tuple[bool, Signature]:
        """
        Compare a candidate write against what was last committed.

        Returns:
            ``(changed, new_signature)``; the signature is handed back to
            ``record`` after the write is applied.
        """
        if not is_trackable(new):
            new_signature = signature(new)
            if is_trackable(old):
                return True, new_signature
            recorded = self._by_path.get(path)
            if recorded is not None and new_signature is not False and isinstance(new, _PRIMITIVES):
                return recorded != new_signature, new_signature
            return not shallow_equal(old, new), new_signature

        new_signature = signature(new)
        if new_signature is False or not is_trackable(old):
            return True, new_signature

        old_signature = self.recorded(old)
        if old_signature is None:
            if old is new:
                # mutated in place before we ever saw it
                return True, new_signature
            old_signature = signature(old)
        return old_signature is False or old_signature != new_signature, new_signature

    def record(self, path: str, value: Any, value_signature: Signature) -> None:
        self.forget_below(path)
        if is_trackable(value):
            self._by_path.pop(path, None)
            if value_signature is not False:
                self._by_identity[id(value)] = (value, value_signature)
        elif value is DELETE or value_signature is False:
            self._by_path.pop(path, None)
            parent, _, last = path.rpartition(".")
            if value is DELETE and parent and last.isdigit():
                # later list elements shifted down
                self.forget_below(parent)
        else:
            self._by_path[path] = value_signature

    def forget(self, value: Any) -> None:
        """Drop the identity signature of a container mutated in place."""
        entry = self._by_identity.get(id(value))
        if entry is not None and entry[0] is value:
            del self._by_identity[id(value)]

    def path_signature(self, path: str) -> Optional[Signature]:
        return self._by_path.get(path)

    def forget_below(self, path: str) -> None:
        prefix = path + "."
        for key in [k for k in self._by_path if k.startswith(prefix)]:
            del self._by_path[key]

    def forget_path(self, path: Optional[str] = None) -> None:
        """Drop the primitive signatures recorded at and below ``path`` (all when None)."""
        if path is None:
            self._by_path.clear()
            return
        self._by_path.pop(path, None)
        self.forget_below(path)

    def clear(self) -> None:
        self._by_identity.clear()
        self._by_path.clear()

    def stats(self) -> Dict[str, int]:
        return {
            "identity_signatures": len(self._by_identity),
            "path_signatures": len(self._by_path),
        }
