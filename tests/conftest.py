# tests/conftest.py
import asyncio
import typing as t
from pathlib import Path

import fakeredis
import pytest

from multiqueue.engine import MultiQueue
from multiqueue.store.memory import MemoryStore
from multiqueue.store.redis import RedisStore
from multiqueue.store.sqlite import SqliteStore

RETRY_AFTER_MS = 500


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def tmp_db_path(tmp_path: Path) -> str:
    return str(tmp_path / "multiqueue.db")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture(params=["memory", "sqlite", "redis"])
async def store(request, tmp_db_path, fake_redis):
    if request.param == "memory":
        s = MemoryStore()
    elif request.param == "sqlite":
        s = SqliteStore(db_path=tmp_db_path)
    else:
        s = RedisStore(fake_redis)
    try:
        yield s
    finally:
        await s.close()
        await fake_redis.aclose()


@pytest.fixture()
def mq(store, clock) -> MultiQueue:
    return MultiQueue(store, prefix="test:", retry_after_ms=RETRY_AFTER_MS, clock=clock)


async def wait_for(
    predicate: t.Callable[[], t.Awaitable[bool]] | t.Callable[[], bool], timeout=2.0, interval=0.01
):
    end = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < end:
        res = await predicate() if asyncio.iscoroutinefunction(predicate) else predicate()
        if res:
            return True
        await asyncio.sleep(interval)
    return False
