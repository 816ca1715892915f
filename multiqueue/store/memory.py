from __future__ import annotations

import asyncio
import logging
from bisect import bisect_left, insort

from ..exceptions import StoreUnavailableError
from ..keys import KeySpace
from .base import QueueStore

logger = logging.getLogger("multiqueue.store.memory")


class SortedSet:
    """Members ordered by (score, member), mirroring Redis sorted-set order."""

    def __init__(self) -> None:
        self._scores: dict[str, float] = {}
        self._entries: list[tuple[float, str]] = []

    def add(self, member: str, score: float) -> bool:
        """Insert or re-score member. Returns True if member is new."""
        old = self._scores.get(member)
        if old is not None:
            del self._entries[bisect_left(self._entries, (old, member))]
        self._scores[member] = score
        insort(self._entries, (score, member))
        return old is None

    def remove(self, member: str) -> bool:
        """Remove member. Returns True if it was present."""
        score = self._scores.pop(member, None)
        if score is None:
            return False
        del self._entries[bisect_left(self._entries, (score, member))]
        return True

    def first(self) -> tuple[float, str] | None:
        """Get lowest (score, member) without removing it."""
        return self._entries[0] if self._entries else None

    def items(self, reverse: bool = False) -> list[tuple[float, str]]:
        """Get (score, member) pairs in ascending (or descending) order."""
        return list(reversed(self._entries)) if reverse else list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, member: object) -> bool:
        return member in self._scores


class MemoryStore(QueueStore):
    """In-process store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._sets: dict[str, SortedSet] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    def _zset(self, key: str) -> SortedSet:
        """Get sorted set for writing, creating it if missing."""
        zset = self._sets.get(key)
        if zset is None:
            zset = self._sets[key] = SortedSet()
        return zset

    def _card(self, key: str) -> int:
        zset = self._sets.get(key)
        return len(zset) if zset else 0

    def _head(self, key: str) -> tuple[float, str] | None:
        zset = self._sets.get(key)
        return zset.first() if zset else None

    def _registered(self, keys: KeySpace) -> list[str]:
        """Registered queues, deepest first."""
        depth = self._sets.get(keys.depth_key)
        return [queue for _, queue in depth.items(reverse=True)] if depth else []

    def _check_open(self) -> None:
        if self._closed:
            raise StoreUnavailableError("Store is closed")

    def _dispatch(self, keys: KeySpace, queue: str, job: str, deadline: int) -> None:
        """Move job from pending to in-flight and refresh the queue depth."""
        pending_key = keys.queue_key(queue)
        self._zset(pending_key).remove(job)
        self._zset(keys.retry_key(queue)).add(job, deadline)
        self._zset(keys.depth_key).add(queue, self._card(pending_key))

    async def push(self, keys: KeySpace, queue: str, job: str, priority: float) -> None:
        """Add job to pending set."""
        async with self._lock:
            self._check_open()
            pending_key = keys.queue_key(queue)
            self._zset(pending_key).add(job, priority)
            self._zset(keys.retry_key(queue)).remove(job)
            self._zset(keys.depth_key).add(queue, self._card(pending_key))

    async def pop(self, keys: KeySpace, queue: str, now: int, deadline: int) -> str | None:
        """Pop from a single queue."""
        async with self._lock:
            self._check_open()
            retry_key = keys.retry_key(queue)
            head = self._head(retry_key)
            if head is not None and head[0] < now:
                self._zset(retry_key).add(head[1], deadline)
                return head[1]

            head = self._head(keys.queue_key(queue))
            if head is None:
                return None
            self._dispatch(keys, queue, head[1], deadline)
            return head[1]

    async def complete(self, keys: KeySpace, queue: str, job: str) -> None:
        """Remove job from in-flight set."""
        async with self._lock:
            self._check_open()
            zset = self._sets.get(keys.retry_key(queue))
            if zset is not None:
                zset.remove(job)

    def _lowest_head(self, candidates: list[str], key_for) -> tuple[float, str, str] | None:
        """Find (score, queue, job) of the lowest head; ties go to candidate order."""
        best: tuple[float, str, str] | None = None
        for queue in candidates:
            head = self._head(key_for(queue))
            if head is not None and (best is None or head[0] < best[0]):
                best = (head[0], queue, head[1])
        return best

    async def pop_any(
        self,
        keys: KeySpace,
        queues: list[str] | None,
        now: int,
        deadline: int,
    ) -> tuple[str, str] | None:
        """Pop across queues, redeliveries first."""
        async with self._lock:
            self._check_open()
            candidates = self._registered(keys) if queues is None else queues

            best = self._lowest_head(candidates, keys.retry_key)
            if best is not None and best[0] < now:
                _, queue, job = best
                self._zset(keys.retry_key(queue)).add(job, deadline)
                return queue, job

            best = self._lowest_head(candidates, keys.queue_key)
            if best is None:
                return None
            _, queue, job = best
            self._dispatch(keys, queue, job, deadline)
            return queue, job

    async def deepest(self, keys: KeySpace) -> str | None:
        """Get deepest queue."""
        async with self._lock:
            self._check_open()
            registered = self._registered(keys)
            return registered[0] if registered else None

    async def pending_depths(self, keys: KeySpace) -> dict[str, int]:
        """Get pending counts."""
        async with self._lock:
            self._check_open()
            depth = self._sets.get(keys.depth_key)
            queues = [queue for _, queue in depth.items()] if depth else []
            return {queue: self._card(keys.queue_key(queue)) for queue in queues}

    async def retry_depths(self, keys: KeySpace) -> dict[str, int]:
        """Get in-flight counts."""
        async with self._lock:
            self._check_open()
            depth = self._sets.get(keys.depth_key)
            queues = [queue for _, queue in depth.items()] if depth else []
            return {queue: self._card(keys.retry_key(queue)) for queue in queues}

    async def close(self) -> None:
        """Close store."""
        async with self._lock:
            self._closed = True
