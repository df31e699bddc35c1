"""
Async Update Controller
=======================

One ``AbortToken`` per path with an in-flight asynchronous update.

- ``abort_previous=True`` aborts the token already registered for the path
  before the new update starts, so only the newest result is applied.
- Cancellation is cooperative: the token is checked once the updater
  resolves; an aborted result is discarded without a write.
- A token is unregistered when its update finishes, but only if it is still
  the token registered for the path.

``Debounced`` defers a function on the running asyncio loop, restarting the
timer on every call.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from .config import ErrorContext, ErrorHandler
from .exceptions import AbortError


class AbortToken:
    """Cancellation handle passed to async updaters."""

    def __init__(self, path: str):
        self.path = path
        self.reason: Optional[str] = None
        self._aborted = False
        self._callbacks: List[Callable[[str], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self, reason: str = "Aborted") -> None:
        if self._aborted:
            return
        self._aborted = True
        self.reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)

    def add_callback(self, callback: Callable[[str], None]) -> None:
        """Call ``callback(reason)`` on abort, immediately if already aborted."""
        if self._aborted:
            callback(self.reason)
        else:
            self._callbacks.append(callback)

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise AbortError(self.reason)

    def __repr__(self) -> str:
        state = f"aborted: {self.reason}" if self._aborted else "active"
        return f"AbortToken({self.path!r}, {state})"


Updater = Callable[[Any, AbortToken], Any]


class AsyncUpdateController:
    """Registry of in-flight async updates keyed by path."""

    def __init__(self, on_error: ErrorHandler):
        self._on_error = on_error
        self._tokens: Dict[str, AbortToken] = {}
        self._cancelled: Set[str] = set()

    async def run(
        self,
        path: str,
        updater: Updater,
        read: Callable[[], Any],
        apply: Callable[[Any], Any],
        abort_previous: bool = False,
    ) -> Any:
        """
        Await ``updater(current, token)`` and apply its result.

        Returns:
            Whatever ``apply`` returned, or None when the update was aborted.

        Raises:
            Exception: Any non-abort updater failure, after it was reported.
        """
        if abort_previous:
            previous = self._tokens.pop(path, None)
            if previous is not None:
                previous.abort("Superseded by a newer update")

        token = AbortToken(path)
        self._tokens[path] = token
        self._cancelled.discard(path)

        try:
            result = updater(read(), token)
            if inspect.isawaitable(result):
                result = await result
            if token.aborted:
                logging.debug(f"Discarded aborted async update of '{path}'")
                return None
            return apply(result)
        except AbortError as e:
            self._on_error(e, ErrorContext("async_update", path, updater))
            return None
        except Exception as e:
            self._on_error(e, ErrorContext("async_update", path, updater))
            raise
        finally:
            if self._tokens.get(path) is token:
                del self._tokens[path]

    def cancel(self, path: Optional[str] = None) -> int:
        """Abort one path's update, or all of them; returns how many were aborted."""
        if path is None:
            tokens = list(self._tokens.items())
            self._tokens.clear()
        else:
            token = self._tokens.pop(path, None)
            tokens = [] if token is None else [(path, token)]
        for token_path, token in tokens:
            token.abort("Cancelled")
            self._cancelled.add(token_path)
        return len(tokens)

    def is_aborted(self, path: str) -> bool:
        """Whether the latest update started for ``path`` was aborted."""
        token = self._tokens.get(path)
        if token is not None:
            return token.aborted
        return path in self._cancelled

    def clear(self) -> None:
        self.cancel()
        self._cancelled.clear()

    def stats(self) -> Dict[str, int]:
        return {"pending_async_updates": len(self._tokens)}


class Debounced:
    """
    Trailing-edge debounce on the running asyncio loop.

    Each call restarts the timer with the latest arguments. Coroutine
    results are scheduled as tasks; failures go to the error handler.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        delay: float,
        on_error: ErrorHandler,
        path: Optional[str] = None,
        scheduled: Optional[Set["Debounced"]] = None,
    ):
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self._fn = fn
        self.delay = delay
        self._on_error = on_error
        self._path = path
        self._scheduled = scheduled
        self._handle: Optional[asyncio.TimerHandle] = None
        self._call: Optional[tuple] = None
        self._tasks: Set["asyncio.Future[Any]"] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        loop = asyncio.get_running_loop()
        self.cancel()
        self._call = (args, kwargs)
        self._handle = loop.call_later(self.delay, self._fire)
        if self._scheduled is not None:
            self._scheduled.add(self)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._settle()

    def flush(self) -> None:
        """Run a pending call now."""
        if self._handle is None:
            return
        self._handle.cancel()
        self._fire()

    async def wait(self) -> None:
        """Wait for scheduled coroutine calls to finish."""
        while self._tasks:
            await asyncio.wait(list(self._tasks))
            # let done-callbacks run
            await asyncio.sleep(0)

    def _fire(self) -> None:
        args, kwargs = self._call
        self._settle()
        try:
            result = self._fn(*args, **kwargs)
        except Exception as e:
            self._on_error(e, ErrorContext("debounce", self._path, self._fn))
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _settle(self) -> None:
        self._handle = None
        self._call = None
        if self._scheduled is not None:
            self._scheduled.discard(self)

    def _task_done(self, task: "asyncio.Future[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._on_error(error, ErrorContext("debounce", self._path, self._fn))


__all__ = ["AbortToken", "AsyncUpdateController", "Debounced", "Updater"]
