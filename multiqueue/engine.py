"""
Multi-queue dispatch engine.

Jobs are pushed to named queues with a numeric priority (lower first). A pop
moves a job into the queue's in-flight set with a visibility deadline; if the
job is not completed before the deadline passes, a later pop hands it out
again. Delivery is therefore at-least-once.

Jobs are identified by their canonical encoding: two equal jobs pushed to the
same queue collapse into one entry, and the second push only re-scores it.
Embed a unique id in the payload if you need duplicates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .codec import Codec, JsonCodec, check_priority
from .keys import DEFAULT_PREFIX, KeySpace
from .models import Dispatch, QueueDepths
from .store.base import QueueStore
from .util.time import now_ms

logger = logging.getLogger("multiqueue.engine")

Q = TypeVar("Q")
J = TypeVar("J")


@dataclass
class MultiQueueOptions:
    """Engine settings shared by every queue under one prefix."""

    prefix: str = DEFAULT_PREFIX
    retry_after_ms: int = 30_000


class MultiQueue(Generic[Q, J]):
    """Priority job queues with visibility timeouts over a shared store."""

    def __init__(
        self,
        store: QueueStore,
        prefix: str = DEFAULT_PREFIX,
        retry_after_ms: int = 30_000,
        *,
        codec: Codec | None = None,
        clock: Callable[[], int] | None = None,
    ):
        if isinstance(retry_after_ms, bool) or not isinstance(retry_after_ms, int) or retry_after_ms <= 0:
            raise ValueError(f"retry_after_ms must be a positive integer, got {retry_after_ms!r}")

        self._store = store
        self._keys = KeySpace(prefix)
        self._retry_after_ms = retry_after_ms
        self._codec = codec or JsonCodec()
        self._clock = clock or now_ms

    @classmethod
    def from_options(
        cls,
        store: QueueStore,
        options: MultiQueueOptions,
        **kwargs: Any,
    ) -> MultiQueue[Q, J]:
        """Create engine from an options dataclass."""
        return cls(store, options.prefix, options.retry_after_ms, **kwargs)

    @property
    def keys(self) -> KeySpace:
        return self._keys

    @property
    def codec(self) -> Codec:
        return self._codec

    @property
    def retry_after_ms(self) -> int:
        return self._retry_after_ms

    @property
    def store(self) -> QueueStore:
        return self._store

    def _window(self) -> tuple[int, int]:
        """Current time and the deadline a dispatch made now would get."""
        now = int(self._clock())
        return now, now + self._retry_after_ms

    def _encode_queues(self, queues: Iterable[Q] | None) -> list[str] | None:
        if queues is None:
            return None
        # Deduplicate by encoding, keeping caller order
        return list(dict.fromkeys(self._codec.encode(q) for q in queues))

    async def push(self, queue: Q, job: J, priority: float) -> None:
        """Add job to queue, or re-score it if an equal job is already pending."""
        encoded_queue = self._codec.encode(queue)
        encoded_job = self._codec.encode(job)
        score = check_priority(priority)

        await self._store.push(self._keys, encoded_queue, encoded_job, score)
        logger.debug(f"Pushed job to {encoded_queue} with priority {score}")

    async def pop(self, queue: Q) -> J | None:
        """Get next job from one queue.

        An in-flight job past its deadline is redelivered before any pending
        job is dispatched. Returns None when nothing is available.
        """
        encoded_queue = self._codec.encode(queue)
        now, deadline = self._window()

        job = await self._store.pop(self._keys, encoded_queue, now, deadline)
        if job is None:
            return None

        logger.debug(f"Dispatched job from {encoded_queue} until {deadline}")
        return self._codec.decode(job)

    async def complete(self, queue: Q, job: J) -> None:
        """Acknowledge job. Unknown or already completed jobs are ignored."""
        encoded_queue = self._codec.encode(queue)
        await self._store.complete(self._keys, encoded_queue, self._codec.encode(job))
        logger.debug(f"Completed job in {encoded_queue}")

    async def get_deepest(self) -> Q | None:
        """Get the queue with the most pending jobs."""
        queue = await self._store.deepest(self._keys)
        return self._codec.decode(queue) if queue is not None else None

    async def pop_any_with_queue(self, queues: Iterable[Q] | None = None) -> Dispatch[Q, J] | None:
        """Get next job from any queue, along with the queue it belongs to.

        Overdue in-flight jobs across all candidates are considered first (the
        oldest deadline wins), then the lowest pending priority across all
        candidates. Priorities are compared as raw numbers, so they are only
        fair across queues if every producer uses the same scale.

        Args:
            queues: Queues to consider. Defaults to every queue ever pushed to.
        """
        candidates = self._encode_queues(queues)
        if candidates is not None and not candidates:
            return None
        now, deadline = self._window()

        result = await self._store.pop_any(self._keys, candidates, now, deadline)
        if result is None:
            return None

        encoded_queue, job = result
        logger.debug(f"Dispatched job from {encoded_queue} until {deadline}")
        return Dispatch(self._codec.decode(encoded_queue), self._codec.decode(job))

    async def pop_any(self, queues: Iterable[Q] | None = None) -> J | None:
        """Get next job from any queue."""
        dispatch = await self.pop_any_with_queue(queues)
        return dispatch.job if dispatch is not None else None

    async def get_queue_depths(self) -> QueueDepths[Q]:
        """Get pending job count for every known queue."""
        return QueueDepths(await self._store.pending_depths(self._keys), self._codec)

    async def get_retry_depths(self) -> QueueDepths[Q]:
        """Get in-flight job count for every known queue."""
        return QueueDepths(await self._store.retry_depths(self._keys), self._codec)

    async def close(self) -> None:
        """Close underlying store."""
        await self._store.close()
