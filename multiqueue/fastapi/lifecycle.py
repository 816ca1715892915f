from __future__ import annotations

import logging
from collections.abc import Sequence
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from ..engine import MultiQueue
from ..keys import DEFAULT_PREFIX
from ..store.base import QueueStore
from ..store.memory import MemoryStore
from ..store.redis import RedisStore
from ..store.sqlite import SqliteStore
from ..worker import JobHandler, Worker

logger = logging.getLogger("multiqueue.lifecycle")

MULTIQUEUE_STATE_KEY = "multiqueue"
WORKER_STATE_KEY = "multiqueue_workers"


def _resolve_store(
    store: QueueStore | None,
    redis_url: str | None,
    db_path: str | None,
) -> QueueStore:
    """Pick store: explicit instance, then Redis, then SQLite, then memory."""
    if store is not None:
        return store
    if redis_url:
        return RedisStore(redis_url=redis_url)
    if db_path:
        return SqliteStore(db_path=db_path)
    logger.warning("No store configured, using in-process MemoryStore")
    return MemoryStore()


def setup_multiqueue(
    app: FastAPI,
    *,
    store: QueueStore | None = None,
    redis_url: str | None = None,
    db_path: str | None = None,
    prefix: str = DEFAULT_PREFIX,
    retry_after_ms: int = 30_000,
    handler: JobHandler | None = None,
    worker_count: int = 1,
    queues: Sequence[Any] | None = None,
    include_router: bool = True,
    api_prefix: str = "/api/v1",
    **engine_kwargs: Any,
) -> MultiQueue:
    """Setup multiqueue in FastAPI application.

    When a handler is given, worker_count polling workers are started with
    the application and stopped on shutdown.
    """
    store = _resolve_store(store, redis_url, db_path)
    mq: MultiQueue = MultiQueue(store, prefix, retry_after_ms, **engine_kwargs)
    setattr(app.state, MULTIQUEUE_STATE_KEY, mq)

    @asynccontextmanager
    async def _lifespan(app_: FastAPI):
        # Startup
        if hasattr(store, "_ensure"):
            await store._ensure()

        workers = []
        if handler is not None:
            for i in range(worker_count):
                worker = Worker(mq, handler, queues=queues, worker_id=f"worker-{i}")
                try:
                    worker.start()
                except Exception:
                    logger.exception(f"Failed to start worker-{i}")
                    continue
                workers.append(worker)
            logger.info(f"Started {len(workers)} workers")

        setattr(app_.state, WORKER_STATE_KEY, workers)

        try:
            yield
        finally:
            logger.info("Shutting down multiqueue...")

            for worker in workers:
                try:
                    await worker.stop()
                except Exception:
                    logger.exception("Failed to stop worker")

            try:
                await mq.close()
            except Exception:
                logger.exception("Failed to close store")

            logger.info("Multiqueue shutdown complete")

    # Compose with existing lifespan
    if app.router.lifespan_context is None:
        app.router.lifespan_context = _lifespan
    else:
        existing = app.router.lifespan_context

        @asynccontextmanager
        async def _composed(app_: FastAPI):
            async with existing(app_):
                async with _lifespan(app_):
                    yield

        app.router.lifespan_context = _composed

    if include_router:
        from .router import get_router

        app.include_router(get_router(), prefix=api_prefix)

    return mq
