import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.testclient import TestClient

from multiqueue.fastapi import lifecycle as lf
from multiqueue.fastapi.lifecycle import setup_multiqueue
from multiqueue.store.memory import MemoryStore
from multiqueue.store.redis import RedisStore
from multiqueue.store.sqlite import SqliteStore


def test_store_resolution_order(tmp_db_path):
    explicit = MemoryStore()
    assert lf._resolve_store(explicit, "redis://x", tmp_db_path) is explicit
    assert isinstance(lf._resolve_store(None, "redis://localhost:6379/0", tmp_db_path), RedisStore)
    assert isinstance(lf._resolve_store(None, None, tmp_db_path), SqliteStore)
    assert isinstance(lf._resolve_store(None, None, None), MemoryStore)


def test_sqlite_backed_app_persists_between_runs(tmp_db_path):
    app = FastAPI()
    setup_multiqueue(app, db_path=tmp_db_path)
    with TestClient(app) as client:
        client.post("/api/v1/queues/push", json={"queue": "q", "job": "kept", "priority": 1})

    app2 = FastAPI()
    setup_multiqueue(app2, db_path=tmp_db_path)
    with TestClient(app2) as client:
        r = client.post("/api/v1/queues/pop", json={"queue": "q"})
        assert r.json() == {"job": "kept"}


def test_workers_started_with_app_drain_queue():
    handled = []

    async def handler(queue, job):
        handled.append(job)

    app = FastAPI()
    setup_multiqueue(app, store=MemoryStore(), handler=handler, worker_count=2)
    with TestClient(app) as client:
        assert len(client.app.state.multiqueue_workers) == 2
        for i in range(3):
            client.post("/api/v1/queues/push", json={"queue": "q", "job": i, "priority": i})

        def drained() -> bool:
            depths = client.get("/api/v1/queues/depths").json()
            return len(handled) == 3 and depths["total_pending"] == depths["total_in_flight"] == 0

        deadline = time.monotonic() + 5
        while not drained() and time.monotonic() < deadline:
            time.sleep(0.05)

        assert drained()
        assert sorted(handled) == [0, 1, 2]


def test_composed_lifespan_and_worker_failures(monkeypatch):
    calls = {"outer": 0}

    @asynccontextmanager
    async def existing(_app):
        calls["outer"] += 1
        yield

    class BoomWorker:
        def __init__(self, *a, **k):
            pass

        def start(self):
            raise RuntimeError("start_boom")

        async def stop(self):
            raise RuntimeError("stop_boom")

    async def handler(queue, job):
        pass

    app = FastAPI()
    app.router.lifespan_context = existing
    monkeypatch.setattr(lf, "Worker", BoomWorker)
    setup_multiqueue(app, store=MemoryStore(), handler=handler, include_router=False)

    with TestClient(app) as client:
        assert client.app.state.multiqueue_workers == []
    assert calls["outer"] == 1


def test_shutdown_close_failure_is_logged():
    class BoomStore(MemoryStore):
        async def close(self) -> None:
            raise RuntimeError("close_boom")

    app = FastAPI()
    setup_multiqueue(app, store=BoomStore(), include_router=False)
    with TestClient(app):
        pass


def test_redis_store_connects_on_startup(monkeypatch):
    import fakeredis

    from multiqueue.store import redis as redis_store

    server = fakeredis.FakeServer()
    urls = []

    def from_url(url, **kwargs):
        urls.append(url)
        return fakeredis.FakeAsyncRedis(server=server, **kwargs)

    monkeypatch.setattr(redis_store.aioredis, "from_url", from_url)

    app = FastAPI()
    mq = setup_multiqueue(app, redis_url="redis://cache:6379/0", include_router=False)
    with TestClient(app):
        # connected before any request touched the store
        assert urls == ["redis://cache:6379/0"]
        assert mq.store._redis is not None
        assert set(mq.store._scripts) == {"push", "pop", "pop_any", "depths"}
    assert mq.store._redis is None
