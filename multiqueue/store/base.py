from __future__ import annotations

import abc

from ..keys import KeySpace


class QueueStore(abc.ABC):
    """Abstract base for the atomic executor behind a multi-queue.

    Every method is one indivisible transaction against the backing store.
    Queue ids and jobs arrive already canonically encoded; scores are plain
    numbers (priorities for pending sets, epoch-millisecond deadlines for
    in-flight sets).
    """

    @abc.abstractmethod
    async def push(self, keys: KeySpace, queue: str, job: str, priority: float) -> None:
        """Add or re-score job in the pending set and refresh the queue depth."""
        ...

    @abc.abstractmethod
    async def pop(self, keys: KeySpace, queue: str, now: int, deadline: int) -> str | None:
        """Redeliver an overdue in-flight job, else dispatch the lowest pending one."""
        ...

    @abc.abstractmethod
    async def complete(self, keys: KeySpace, queue: str, job: str) -> None:
        """Remove job from the in-flight set. Absent jobs are ignored."""
        ...

    @abc.abstractmethod
    async def pop_any(
        self,
        keys: KeySpace,
        queues: list[str] | None,
        now: int,
        deadline: int,
    ) -> tuple[str, str] | None:
        """Pop across candidate queues (all registered ones when None).

        Returns (queue, job) or None.
        """
        ...

    @abc.abstractmethod
    async def deepest(self, keys: KeySpace) -> str | None:
        """Get the queue with the highest pending count."""
        ...

    @abc.abstractmethod
    async def pending_depths(self, keys: KeySpace) -> dict[str, int]:
        """Get pending set size for every registered queue."""
        ...

    @abc.abstractmethod
    async def retry_depths(self, keys: KeySpace) -> dict[str, int]:
        """Get in-flight set size for every registered queue."""
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        """Close store connections."""
        ...
