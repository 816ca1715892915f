from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite

from ..exceptions import StoreUnavailableError
from ..keys import KeySpace
from .base import QueueStore

logger = logging.getLogger("multiqueue.store.sqlite")


class SqliteStore(QueueStore):
    """SQLite-backed store emulating sorted sets in one table.

    Rows are (key, member, score) with the same key layout as the Redis
    store. Each transaction runs under BEGIN IMMEDIATE, so concurrent
    processes sharing the database file are serialized by SQLite's write lock.
    """

    def __init__(self, db_path: str = "./multiqueue.db", timeout: float = 30.0):
        self._db_path = db_path
        self._timeout = timeout
        self._lock = asyncio.Lock()
        self._conn: aiosqlite.Connection | None = None
        self._closed = False

    async def _ensure(self) -> aiosqlite.Connection:
        """Ensure connection is established."""
        if self._closed:
            raise StoreUnavailableError("Store is closed")
        if self._conn is None:
            self._conn = await aiosqlite.connect(
                self._db_path,
                isolation_level=None,
                timeout=self._timeout,
            )
            await self._conn.execute("PRAGMA journal_mode=WAL;")
            await self._conn.execute("PRAGMA synchronous=NORMAL;")
            await self._init_schema(self._conn)
            logger.info(f"Opened SQLite store at {self._db_path}")
        return self._conn

    async def _init_schema(self, cx: aiosqlite.Connection) -> None:
        """Initialize database schema."""
        await cx.execute(
            """
            CREATE TABLE IF NOT EXISTS zsets (
              key TEXT NOT NULL,
              member TEXT NOT NULL,
              score REAL NOT NULL,
              PRIMARY KEY (key, member)
            );
            """
        )
        await cx.execute("CREATE INDEX IF NOT EXISTS idx_zsets_order ON zsets(key, score, member);")

    @asynccontextmanager
    async def _tx(self) -> AsyncIterator[aiosqlite.Connection]:
        """Immediate transaction with lock."""
        async with self._lock:
            cx = await self._ensure()
            await cx.execute("BEGIN IMMEDIATE")
            try:
                yield cx
            except BaseException:
                logger.exception("Transaction rolled back")
                await cx.execute("ROLLBACK")
                raise
            await cx.execute("COMMIT")

    async def close(self) -> None:
        """Close database connection."""
        self._closed = True
        if self._conn is not None:
            try:
                await self._conn.close()
            finally:
                self._conn = None

    async def _zadd(self, cx: aiosqlite.Connection, key: str, member: str, score: float) -> None:
        await cx.execute(
            """
            INSERT INTO zsets (key, member, score) VALUES (?, ?, ?)
            ON CONFLICT(key, member) DO UPDATE SET score = excluded.score
            """,
            (key, member, score),
        )

    async def _zrem(self, cx: aiosqlite.Connection, key: str, member: str) -> None:
        await cx.execute("DELETE FROM zsets WHERE key = ? AND member = ?", (key, member))

    async def _zcard(self, cx: aiosqlite.Connection, key: str) -> int:
        row = await (await cx.execute("SELECT COUNT(*) FROM zsets WHERE key = ?", (key,))).fetchone()
        return int(row[0])

    async def _head(self, cx: aiosqlite.Connection, key: str) -> tuple[float, str] | None:
        row = await (
            await cx.execute(
                "SELECT score, member FROM zsets WHERE key = ? ORDER BY score, member LIMIT 1",
                (key,),
            )
        ).fetchone()
        return (row[0], row[1]) if row else None

    async def _registered(self, cx: aiosqlite.Connection, keys: KeySpace, *, deepest_first: bool) -> list[str]:
        order = "score DESC, member DESC" if deepest_first else "score, member"
        rows = await (
            await cx.execute(
                f"SELECT member FROM zsets WHERE key = ? ORDER BY {order}",
                (keys.depth_key,),
            )
        ).fetchall()
        return [row[0] for row in rows]

    async def _refresh_depth(self, cx: aiosqlite.Connection, keys: KeySpace, queue: str) -> None:
        depth = await self._zcard(cx, keys.queue_key(queue))
        await self._zadd(cx, keys.depth_key, queue, depth)

    async def _dispatch(
        self, cx: aiosqlite.Connection, keys: KeySpace, queue: str, job: str, deadline: int
    ) -> None:
        """Move job from pending to in-flight."""
        await self._zrem(cx, keys.queue_key(queue), job)
        await self._zadd(cx, keys.retry_key(queue), job, deadline)
        await self._refresh_depth(cx, keys, queue)

    async def push(self, keys: KeySpace, queue: str, job: str, priority: float) -> None:
        """Add job to pending set."""
        async with self._tx() as cx:
            await self._zadd(cx, keys.queue_key(queue), job, priority)
            await self._zrem(cx, keys.retry_key(queue), job)
            await self._refresh_depth(cx, keys, queue)

    async def pop(self, keys: KeySpace, queue: str, now: int, deadline: int) -> str | None:
        """Pop from a single queue."""
        async with self._tx() as cx:
            retry_key = keys.retry_key(queue)
            head = await self._head(cx, retry_key)
            if head is not None and head[0] < now:
                await self._zadd(cx, retry_key, head[1], deadline)
                return head[1]

            head = await self._head(cx, keys.queue_key(queue))
            if head is None:
                return None
            await self._dispatch(cx, keys, queue, head[1], deadline)
            return head[1]

    async def complete(self, keys: KeySpace, queue: str, job: str) -> None:
        """Remove job from in-flight set."""
        async with self._tx() as cx:
            await self._zrem(cx, keys.retry_key(queue), job)

    async def _lowest_head(
        self, cx: aiosqlite.Connection, candidates: list[str], key_for
    ) -> tuple[float, str, str] | None:
        best: tuple[float, str, str] | None = None
        for queue in candidates:
            head = await self._head(cx, key_for(queue))
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
        async with self._tx() as cx:
            if queues is None:
                candidates = await self._registered(cx, keys, deepest_first=True)
            else:
                candidates = queues

            best = await self._lowest_head(cx, candidates, keys.retry_key)
            if best is not None and best[0] < now:
                _, queue, job = best
                await self._zadd(cx, keys.retry_key(queue), job, deadline)
                return queue, job

            best = await self._lowest_head(cx, candidates, keys.queue_key)
            if best is None:
                return None
            _, queue, job = best
            await self._dispatch(cx, keys, queue, job, deadline)
            return queue, job

    async def deepest(self, keys: KeySpace) -> str | None:
        """Get deepest queue."""
        async with self._tx() as cx:
            registered = await self._registered(cx, keys, deepest_first=True)
        return registered[0] if registered else None

    async def pending_depths(self, keys: KeySpace) -> dict[str, int]:
        """Get pending counts."""
        async with self._tx() as cx:
            return {
                queue: await self._zcard(cx, keys.queue_key(queue))
                for queue in await self._registered(cx, keys, deepest_first=False)
            }

    async def retry_depths(self, keys: KeySpace) -> dict[str, int]:
        """Get in-flight counts."""
        async with self._tx() as cx:
            return {
                queue: await self._zcard(cx, keys.retry_key(queue))
                for queue in await self._registered(cx, keys, deepest_first=False)
            }
