from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from .engine import MultiQueue

logger = logging.getLogger("multiqueue.worker")

JobHandler = Callable[[Any, Any], Awaitable[None]]


class Worker:
    """Polling consumer that drains a multi-queue.

    Jobs whose handler raises are left in flight and come back after the
    queue's retry window, so handlers must tolerate seeing a job twice.
    """

    def __init__(
        self,
        mq: MultiQueue,
        handler: JobHandler,
        *,
        queues: Sequence[Any] | None = None,
        worker_id: str | None = None,
        poll_interval: float = 0.5,
        error_backoff: float = 1.0,
    ):
        self._mq = mq
        self._handler = handler
        self._queues = list(queues) if queues is not None else None
        self._worker_id = worker_id or f"worker-{id(self)}"
        self._poll_interval = poll_interval
        self._error_backoff = error_backoff

        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self.processed = 0
        self.failed = 0

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def start(self) -> asyncio.Task[None]:
        """Start worker."""
        if self._task and not self._task.done():
            return self._task

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"worker-{self._worker_id}")
        logger.info(f"Worker {self._worker_id} started")
        return self._task

    async def stop(self) -> None:
        """Stop worker. A job being handled is abandoned and will be redelivered."""
        self._stop_event.set()
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info(f"Worker {self._worker_id} stopped")

    async def _idle(self, seconds: float) -> None:
        """Sleep unless stop is requested first."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)

    async def _run(self) -> None:
        """Main worker loop."""
        while not self._stop_event.is_set():
            try:
                dispatch = await self._mq.pop_any_with_queue(self._queues)
                if dispatch is None:
                    await self._idle(self._poll_interval)
                    continue

                await self.run_once(dispatch.queue, dispatch.job)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Worker {self._worker_id} loop error: {e}")
                await self._idle(self._error_backoff)

    async def run_once(self, queue: Any, job: Any) -> bool:
        """Handle a single job and acknowledge it on success."""
        try:
            await self._handler(queue, job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed += 1
            logger.exception(f"Handler failed for job from {queue!r}, leaving it for redelivery: {e}")
            return False

        await self._mq.complete(queue, job)
        self.processed += 1
        return True
