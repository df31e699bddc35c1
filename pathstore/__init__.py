"""
pathstore - Path-Addressable Reactive State

A single mutable state tree with fine-grained path subscriptions, nested
transactional batches, bounded per-path undo/redo and cancellable async
updates.
"""

# Store facade and factory
from .store import ObservableStore, create_observable_store

# Building blocks
from .async_updates import AbortToken, Debounced
from .batch import BatchContext, BatchMode
from .config import ErrorContext, StoreConfig, log_error
from .container import DELETE
from .registry import Change, Subscription
from .tracking import ListProxy, StateProxy, unwrap

# Paths
from .path import PathRecorder, normalize_cache_key, resolve_path, root

# Middlewares
from .middleware import compose_middlewares, freeze_middleware, logging_middleware

# Change detection
from .signature import fast_deep_hash, safe_serialize, should_skip, signature

# Exceptions
from .exceptions import (
    AbortError,
    IntermediateUndefinedError,
    InvalidPathError,
    PathParseError,
    PathStoreError,
    ReadOnlyPathError,
)

__all__ = [
    # Store
    "ObservableStore",
    "create_observable_store",
    "StoreConfig",
    "ErrorContext",
    "log_error",
    # Subscriptions and batches
    "Subscription",
    "Change",
    "BatchContext",
    "BatchMode",
    # Async
    "AbortToken",
    "Debounced",
    # State access
    "StateProxy",
    "ListProxy",
    "unwrap",
    "DELETE",
    # Paths
    "PathRecorder",
    "root",
    "resolve_path",
    "normalize_cache_key",
    # Middlewares
    "compose_middlewares",
    "logging_middleware",
    "freeze_middleware",
    # Change detection
    "signature",
    "safe_serialize",
    "fast_deep_hash",
    "should_skip",
    # Exceptions
    "PathStoreError",
    "InvalidPathError",
    "PathParseError",
    "IntermediateUndefinedError",
    "AbortError",
    "ReadOnlyPathError",
]
