import asyncio

import pytest

from conftest import RETRY_AFTER_MS, wait_for

from multiqueue.engine import MultiQueue
from multiqueue.store.memory import MemoryStore
from multiqueue.worker import Worker


@pytest.fixture()
def memory_mq(clock):
    return MultiQueue(MemoryStore(), prefix="w:", retry_after_ms=RETRY_AFTER_MS, clock=clock)


@pytest.mark.asyncio
async def test_worker_handles_and_completes_jobs(memory_mq):
    seen = []

    async def handler(queue, job):
        seen.append((queue, job))

    await memory_mq.push("q1", {"id": 1}, 2)
    await memory_mq.push("q2", {"id": 2}, 1)

    wk = Worker(memory_mq, handler, poll_interval=0.01)
    t1 = wk.start()
    t2 = wk.start()
    assert t1 is t2

    assert await wait_for(lambda: wk.processed == 2)
    await wk.stop()

    assert seen == [("q2", {"id": 2}), ("q1", {"id": 1})]
    assert (await memory_mq.get_retry_depths()).total() == 0


@pytest.mark.asyncio
async def test_worker_leaves_failed_job_for_redelivery(memory_mq, clock):
    attempts = []

    async def flaky(queue, job):
        attempts.append(job)
        if len(attempts) == 1:
            raise ValueError("oh no")

    await memory_mq.push("q", "job", 1)
    wk = Worker(memory_mq, flaky, poll_interval=0.01)
    wk.start()

    assert await wait_for(lambda: wk.failed == 1)
    assert (await memory_mq.get_retry_depths())["q"] == 1

    clock.advance(RETRY_AFTER_MS + 1)
    assert await wait_for(lambda: wk.processed == 1)
    await wk.stop()

    assert attempts == ["job", "job"]
    assert (await memory_mq.get_retry_depths())["q"] == 0


@pytest.mark.asyncio
async def test_worker_respects_queue_filter(memory_mq):
    handled = []

    async def handler(queue, job):
        handled.append(queue)

    await memory_mq.push("wanted", "a", 5)
    await memory_mq.push("other", "b", 1)

    wk = Worker(memory_mq, handler, queues=["wanted"], poll_interval=0.01)
    wk.start()
    assert await wait_for(lambda: wk.processed == 1)
    await asyncio.sleep(0.05)
    await wk.stop()

    assert handled == ["wanted"]
    assert (await memory_mq.get_queue_depths())["other"] == 1


@pytest.mark.asyncio
async def test_worker_survives_store_errors_and_stops(memory_mq):
    async def handler(queue, job):
        pass

    await memory_mq.close()
    wk = Worker(memory_mq, handler, poll_interval=0.01, error_backoff=0.01)
    task = wk.start()
    await asyncio.sleep(0.05)
    assert not task.done()
    await wk.stop()
    assert task.done()

    # stop() when never started
    await Worker(memory_mq, handler).stop()


@pytest.mark.asyncio
async def test_run_once_reports_outcome(memory_mq):
    async def ok(queue, job):
        pass

    async def bad(queue, job):
        raise RuntimeError("nope")

    await memory_mq.push("q", "x", 1)
    await memory_mq.pop("q")

    assert not await Worker(memory_mq, bad).run_once("q", "x")
    assert (await memory_mq.get_retry_depths())["q"] == 1
    assert await Worker(memory_mq, ok).run_once("q", "x")
    assert (await memory_mq.get_retry_depths())["q"] == 0
