"""
Batch / Transaction Manager
===========================

A stack of pending-write frames. ``update`` stages into the top frame while a
batch is open; closing a nested frame merges it into its parent; closing the
last frame commits everything as one state transition with one notification
pass.

Frames come in two modes: ``USER`` for explicit ``store.batch()`` calls and
``SYSTEM`` for the implicit batch wrapped around list mutations. Both behave
the same; the mode is kept for diagnostics.

A frame whose body raises is discarded: none of its staged writes reach the
parent or the state.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .container import DELETE, is_node, read_in, write_in
from .exceptions import IntermediateUndefinedError
from .path import is_ancestor, join_path, relative_segments
from .registry import Change


class BatchMode(Enum):
    """Origin of a batch frame."""

    SYSTEM = "system"
    USER = "user"


@dataclass(eq=False)
class BatchFrame:
    mode: BatchMode
    pending: Dict[str, Any] = field(default_factory=dict)
    # ordered set of keys to re-notify with this frame's commit
    forced: Dict[str, None] = field(default_factory=dict)
    # per-path write options (keep_quiet, record_history)
    options: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def stage(self, path: str, value: Any, options: Optional[Dict[str, Any]] = None) -> None:
        # re-staging moves the path to the end: commit order is latest-write order
        self.pending.pop(path, None)
        self.pending[path] = value
        self.options[path] = options or {}

    def merge_into(self, parent: "BatchFrame") -> None:
        for path, value in self.pending.items():
            parent.stage(path, value, self.options.get(path))
        parent.forced.update(self.forced)


CommitFn = Callable[
    [Dict[str, Any], Iterable[str], Dict[str, Dict[str, Any]]], List[Change]
]


class BatchManager:
    """Owns the frame stack; commits through the store-supplied callback."""

    def __init__(self, commit: CommitFn):
        self._commit = commit
        self._stack: List[BatchFrame] = []

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def is_open(self) -> bool:
        return bool(self._stack)

    def push(self, mode: BatchMode = BatchMode.USER) -> BatchFrame:
        frame = BatchFrame(mode)
        self._stack.append(frame)
        return frame

    def stage(
        self, path: str, value: Any, invalidate: Iterable[str] = (), **options: Any
    ) -> None:
        frame = self._stack[-1]
        frame.stage(path, value, options)
        for key in invalidate:
            frame.forced[key] = None

    def pop(self, frame: BatchFrame, discard: bool = False) -> Optional[List[Change]]:
        """
        Close ``frame``.

        Returns the committed changes when this closed the outermost frame,
        otherwise None.
        """
        index = next(i for i, f in enumerate(self._stack) if f is frame)
        del self._stack[index]
        if discard:
            return None
        if self._stack:
            # interleaved async batches may close out of order
            parent = self._stack[index - 1] if index > 0 else self._stack[-1]
            frame.merge_into(parent)
            return None
        return self._commit(frame.pending, frame.forced, frame.options)

    def clear(self) -> None:
        self._stack.clear()

    def read(self, path: str, committed: Callable[[str], Any]) -> Any:
        """
        Read ``path`` as seen from inside the open batches.

        Applies staged writes in order on top of the committed value: an
        exact or ancestor write replaces the value, a descendant write is
        applied to a private copy.
        """
        value = committed(path)
        if not self._stack:
            return value
        owned = False
        for frame in self._stack:
            for staged_path, staged in frame.pending.items():
                if staged_path == path:
                    value = staged
                    owned = False
                elif is_ancestor(staged_path, path):
                    base = None if staged is DELETE else staged
                    value = read_in(base, relative_segments(staged_path, path))
                    owned = False
                elif is_ancestor(path, staged_path) and is_node(value):
                    if not owned:
                        value = copy.deepcopy(value)
                        owned = True
                    rest = join_path(relative_segments(path, staged_path))
                    try:
                        write_in(value, rest, staged)
                    except (IntermediateUndefinedError, IndexError, TypeError):
                        pass
        return None if value is DELETE else value


class BatchContext:
    """
    Context manager around one batch frame.

    Works with both ``with`` and ``async with``. After the outermost context
    exits, ``changes`` holds the committed changes.
    """

    def __init__(self, manager: BatchManager, mode: BatchMode = BatchMode.USER):
        self._manager = manager
        self._mode = mode
        self._frame: Optional[BatchFrame] = None
        self.changes: Optional[List[Change]] = None

    @property
    def mode(self) -> BatchMode:
        return self._mode

    def __enter__(self) -> "BatchContext":
        self._frame = self._manager.push(self._mode)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        frame, self._frame = self._frame, None
        self.changes = self._manager.pop(frame, discard=exc_type is not None)
        return False

    async def __aenter__(self) -> "BatchContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
