"""
Path Model
==========

A path names one location inside the state tree. Its canonical form is a
dot-joined string (``"users.0.name"``); digit-only segments are integers and
address list elements.

Callers can spell a location three ways:

- a string: ``"users.0.name"``, ``"users[0].name"`` or ``"$.users.0.name"``
- an accessor evaluated against a recording placeholder root::

      store.get(lambda s: s.users[0].name)
      store.get(lambda s, t: s.users[t(index)].name)   # t() tags a dynamic segment

- a pre-built recorder: ``root.users[0].name``

Accessors are executed once against a ``PathRecorder``; every attribute or
item access appends a segment. Nothing from the accessor is retained apart
from the resulting path.
"""

import inspect
import logging
import re
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from .exceptions import InvalidPathError, PathParseError

Segment = Union[str, int]
Segments = Tuple[Segment, ...]

_INDEX_RE = re.compile(r"^(0|[1-9][0-9]*)$")
_BRACKET_RE = re.compile(r"\[\s*(?:'([^']*)'|\"([^\"]*)\"|([^\]]*?))\s*\]")
_ROOT_MARKER = "$."


# ============================================================================
# SEGMENTS
# ============================================================================


def _to_segment(part: str) -> Segment:
    return int(part) if _INDEX_RE.match(part) else part


def split_path(path: str) -> Segments:
    """Split a canonical path into segments: ``"a.b.0"`` -> ``("a", "b", 0)``."""
    return tuple(_to_segment(part) for part in path.split("."))


def join_path(segments: Sequence[Segment]) -> str:
    return ".".join(str(segment) for segment in segments)


def is_ancestor(ancestor: str, path: str) -> bool:
    """True when ``ancestor`` is a strict prefix of ``path`` on segment boundaries."""
    return path.startswith(ancestor + ".")


def relative_segments(ancestor: str, path: str) -> Segments:
    """Segments of ``path`` below ``ancestor``."""
    if path == ancestor:
        return ()
    if not is_ancestor(ancestor, path):
        raise InvalidPathError(f"'{ancestor}' is not an ancestor of '{path}'")
    return split_path(path[len(ancestor) + 1 :])


def parent_path(path: str) -> Optional[str]:
    """Parent path, or None for top-level keys."""
    head, sep, _ = path.rpartition(".")
    return head if sep else None


def _strip_root_marker(path: str) -> str:
    # "$.a", "store.$.a" and "s.$.a" all address "a"
    index = path.find(_ROOT_MARKER)
    if index >= 0:
        return path[index + len(_ROOT_MARKER) :]
    return path


def _replace_brackets(match: "re.Match") -> str:
    quoted_single, quoted_double, bare = match.groups()
    value = quoted_single if quoted_single is not None else quoted_double
    if value is None:
        value = bare
    return "." + value


def normalize_path(path: str) -> str:
    """
    Canonicalize a string path.

    Strips a root marker, turns bracket accesses into dot segments and
    validates that no segment is empty.
    """
    text = _strip_root_marker(path.strip())
    text = _BRACKET_RE.sub(_replace_brackets, text)
    if text.startswith("."):
        text = text[1:]
    if not text:
        raise InvalidPathError(f"Empty path: {path!r}")
    parts = text.split(".")
    if any(not part for part in parts):
        raise InvalidPathError(f"Malformed path {path!r}: empty segment")
    return join_path(_to_segment(part) for part in parts)


# ============================================================================
# ACCESSORS
# ============================================================================


class PathRecorder:
    """
    Placeholder root that records navigation.

    Each attribute or item access returns a new recorder with one more
    segment, so recorders can be shared freely.
    """

    __slots__ = ("_segments",)

    def __init__(self, segments: Segments = ()):
        object.__setattr__(self, "_segments", tuple(segments))

    def __getattr__(self, name: str) -> "PathRecorder":
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)
        return PathRecorder(self._segments + (name,))

    def __getitem__(self, key: Any) -> "PathRecorder":
        keys = key if isinstance(key, tuple) else (key,)
        segments = list(self._segments)
        for item in keys:
            if isinstance(item, bool) or not isinstance(item, (int, str)):
                if isinstance(item, (slice, float)) or item is None:
                    raise PathParseError(f"Unsupported path segment: {item!r}")
                item = str(item)
            if isinstance(item, str):
                segments.extend(split_path(item) if item else (item,))
            else:
                segments.append(item)
        return PathRecorder(tuple(segments))

    def __setattr__(self, name: str, value: Any) -> None:
        raise PathParseError("Accessors must not assign")

    @property
    def __store_path__(self) -> str:
        if not self._segments:
            raise PathParseError("Accessor did not navigate below the root")
        return normalize_path(join_path(self._segments))

    def __repr__(self) -> str:
        return f"PathRecorder({join_path(self._segments)!r})"


root = PathRecorder()


def _positional_arity(fn: Callable) -> int:
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError) as e:
        raise PathParseError(f"Cannot inspect accessor {fn!r}") from e
    count = 0
    for param in signature.parameters.values():
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            count += 1
        elif param.kind == param.VAR_POSITIONAL:
            raise PathParseError("Accessors must not take *args")
    return count


def resolve_accessor(fn: Callable) -> str:
    """
    Resolve a one- or two-argument accessor into a canonical path.

    The accessor receives the recording root and, when it takes two
    parameters, a tag helper. ``t(value)`` returns ``value`` unchanged, so a
    dynamic segment lands in the path exactly as captured at call time.
    """
    arity = _positional_arity(fn)
    if arity not in (1, 2):
        raise PathParseError(
            f"Accessor must look like 'lambda s: s.a.b' or 'lambda s, t: ...', got {arity} parameters"
        )

    captured: List[Any] = []

    def tag(value: Any) -> Any:
        captured.append(value)
        return value

    args = (root,) if arity == 1 else (root, tag)
    try:
        result = fn(*args)
    except PathParseError:
        raise
    except Exception as e:
        raise PathParseError(f"Accessor {fn!r} could not be evaluated: {e}") from e

    if not isinstance(result, PathRecorder):
        raise PathParseError(
            f"Accessor {fn!r} must return a navigation from its root, got {type(result).__name__}"
        )
    if captured:
        logging.debug(f"Accessor resolved dynamic segments {captured!r}")
    return result.__store_path__


PathLike = Union[str, int, PathRecorder, Callable[..., Any]]


def resolve_path(
    path: Any, capture: Optional[Callable[[Callable[[], Any]], str]] = None
) -> str:
    """
    Resolve a path or accessor into its canonical string form.

    Args:
        path: String, integer, recorder, proxy, or accessor callable.
        capture: Resolver for zero-argument accessors that read through a
            live store; supplied by the store.

    Raises:
        InvalidPathError: If no path was given or it is malformed.
        PathParseError: If an accessor cannot be resolved.
    """
    if path is None:
        raise InvalidPathError("A path or accessor is required")
    if isinstance(path, str):
        return normalize_path(path)
    if isinstance(path, bool):
        raise InvalidPathError(f"Expected a path or accessor, got bool ({path!r})")
    if isinstance(path, int):
        if path < 0:
            raise InvalidPathError(f"Negative index path: {path}")
        return str(path)

    store_path = getattr(path, "__store_path__", None)
    if isinstance(store_path, str):
        return store_path

    if callable(path):
        if _positional_arity(path) == 0:
            if capture is None:
                raise PathParseError(
                    "Zero-argument accessors can only be resolved by a store"
                )
            return normalize_path(capture(path))
        return resolve_accessor(path)

    raise InvalidPathError(
        f"Expected a path or accessor, got {type(path).__name__} ({path!r})"
    )


def normalize_cache_key(
    key: Any,
    state: Any = None,
    capture: Optional[Callable[[Callable[[], Any]], str]] = None,
) -> str:
    """
    Reduce a cache key to a single string.

    Lists join their parts with ``"."``. Accessors become paths; any other
    callable is a selector called with ``state`` and stringified. ``None``
    and selectors that fail become ``""``.

    A callable that only navigates its argument is an accessor even when
    ``state`` is given: ``lambda s: s.user.id`` is the key ``"user.id"``.
    Use ``lambda s: str(s.user.id)`` to key on the value instead.
    """
    if isinstance(key, (list, tuple)):
        parts = (normalize_cache_key(part, state, capture) for part in key)
        return ".".join(part for part in parts if part)
    if key is None:
        return ""
    if isinstance(key, str):
        return key
    if isinstance(key, (bool, int, float)):
        return str(key)

    store_path = getattr(key, "__store_path__", None)
    if isinstance(store_path, str):
        return store_path

    if callable(key):
        try:
            return resolve_path(key, capture)
        except (PathParseError, InvalidPathError):
            pass
        if state is None:
            return ""
        try:
            result = key(state)
        except Exception as e:
            logging.debug(f"Cache key selector {key!r} failed: {e}")
            return ""
        return "" if result is None else str(result)

    return str(key)
