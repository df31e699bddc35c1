"""
Exceptions raised by the path store.

Structural errors (bad paths, missing parents) are raised synchronously from
the offending call. ``AbortError`` is the expected outcome of a cancelled
asynchronous update and is never reported as a failure.
"""


class PathStoreError(Exception):
    """Base class for all path store errors."""

    pass


class InvalidPathError(PathStoreError, ValueError):
    """Raised when a path or accessor is missing or malformed."""

    pass


class PathParseError(PathStoreError, ValueError):
    """Raised when an accessor cannot be resolved into a path."""

    pass


class IntermediateUndefinedError(PathStoreError, KeyError):
    """Raised when the parent of a write target does not exist."""

    def __init__(self, path: str, missing: str):
        self.path = path
        self.missing = missing
        super().__init__(
            f"Cannot set value at '{path}': intermediate '{missing}' is undefined"
        )

    def __str__(self) -> str:
        return self.args[0]


class AbortError(PathStoreError):
    """Raised when an asynchronous update was aborted."""

    def __init__(self, reason: str = "Aborted"):
        self.reason = reason
        super().__init__(reason)


class ReadOnlyPathError(PathStoreError):
    """Raised by the freeze middleware when a read-only path is written."""

    pass
