"""Store key helpers for a prefixed multi-queue namespace."""

from __future__ import annotations

from dataclasses import dataclass

# Default key prefix used when none is configured.
DEFAULT_PREFIX = "multiqueue:"


@dataclass(frozen=True)
class KeySpace:
    """Maps a prefix and encoded queue ids to store keys."""

    prefix: str = DEFAULT_PREFIX

    @property
    def depth_key(self) -> str:
        """Sorted-set key of the shared depth index."""
        return f"{self.prefix}depth"

    @property
    def queue_prefix(self) -> str:
        return f"{self.prefix}queue:"

    @property
    def retry_prefix(self) -> str:
        return f"{self.prefix}retry:"

    def queue_key(self, encoded_queue: str) -> str:
        """Sorted-set key of a queue's pending jobs."""
        return f"{self.queue_prefix}{encoded_queue}"

    def retry_key(self, encoded_queue: str) -> str:
        """Sorted-set key of a queue's in-flight jobs."""
        return f"{self.retry_prefix}{encoded_queue}"
