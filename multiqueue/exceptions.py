from __future__ import annotations


class MultiQueueError(Exception):
    """Base exception for multiqueue library."""

    pass


class SerializationError(MultiQueueError, ValueError):
    """Raised when a queue id or job cannot be canonically encoded or decoded."""

    pass


class StoreUnavailableError(MultiQueueError):
    """Raised when the backing store is closed or unreachable."""

    pass


class TransactionRejectedError(MultiQueueError):
    """Raised when the store refuses or aborts an atomic transaction."""

    pass
