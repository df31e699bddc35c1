"""
Per-path undo/redo history.

Each path owns a bounded undo stack of committed values with the current
value on top, and a redo stack of values popped by ``undo``. Capacity is
fixed per path when the store is built; a capacity of 0 turns history off
for that path.
"""

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional


class HistoryManager:
    """
    Bounded undo/redo stacks keyed by canonical path.

    ``undo`` and ``redo`` return None when there is nothing to do; callers
    distinguish that from a stored None through ``can_undo``/``can_redo``.
    """

    def __init__(self, capacity_for: Callable[[str], int]):
        self._capacity_for = capacity_for
        self._undo: Dict[str, Deque[Any]] = {}
        self._redo: Dict[str, List[Any]] = {}

    def push(self, path: str, old_value: Any, new_value: Any) -> bool:
        """
        Record a committed change at ``path``.

        The first push for a path seeds the stack with ``old_value`` so the
        change can be undone. Clears the path's redo stack.
        """
        capacity = self._capacity_for(path)
        if capacity <= 0:
            return False
        stack = self._undo.get(path)
        if stack is None:
            stack = self._undo[path] = deque(maxlen=capacity)
            stack.append(old_value)
        stack.append(new_value)
        self._redo.pop(path, None)
        return True

    def can_undo(self, path: str) -> bool:
        stack = self._undo.get(path)
        return stack is not None and len(stack) > 1

    def can_redo(self, path: str) -> bool:
        return bool(self._redo.get(path))

    def undo(self, path: str) -> Optional[Any]:
        """Move the current value to the redo stack; return the value to restore."""
        if not self.can_undo(path):
            return None
        stack = self._undo[path]
        self._redo.setdefault(path, []).append(stack.pop())
        return stack[-1]

    def redo(self, path: str) -> Optional[Any]:
        """Move the latest undone value back onto the undo stack and return it."""
        if not self.can_redo(path):
            return None
        value = self._redo[path].pop()
        if not self._redo[path]:
            del self._redo[path]
        self._undo[path].append(value)
        return value

    def get_undo(self, path: str, step: int = 1) -> Optional[Any]:
        """Value that ``step`` undos would restore, without moving."""
        stack = self._undo.get(path)
        if step < 1 or stack is None or len(stack) <= step:
            return None
        return stack[-1 - step]

    def get_redo(self, path: str, step: int = 1) -> Optional[Any]:
        """Value that ``step`` redos would restore, without moving."""
        stack = self._redo.get(path)
        if step < 1 or not stack or len(stack) < step:
            return None
        return stack[-step]

    def get_history(self, path: str) -> Dict[str, List[Any]]:
        return {
            "undo": list(self._undo.get(path, ())),
            "redo": list(self._redo.get(path, ())),
        }

    def clear(self, path: Optional[str] = None) -> None:
        if path is None:
            self._undo.clear()
            self._redo.clear()
            return
        self._undo.pop(path, None)
        self._redo.pop(path, None)

    def prune_unused(self, active_paths: Iterable[str]) -> List[str]:
        """Drop stacks for paths not in ``active_paths``; return the dropped paths."""
        active = set(active_paths)
        dropped = [path for path in self._undo if path not in active]
        for path in dropped:
            self.clear(path)
        if dropped:
            logging.debug(f"Pruned history for {len(dropped)} unused paths")
        return dropped

    def paths(self) -> List[str]:
        return list(self._undo)

    def entries(self) -> List[Dict[str, Any]]:
        return [
            {
                "path": path,
                "length": len(stack),
                "redo_length": len(self._redo.get(path, ())),
                "capacity": stack.maxlen,
            }
            for path, stack in self._undo.items()
        ]
