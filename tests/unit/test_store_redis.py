import pytest

from multiqueue.engine import MultiQueue
from multiqueue.exceptions import TransactionRejectedError
from multiqueue.store.redis import RedisStore


@pytest.mark.asyncio
async def test_redis_key_layout_matches_namespace(fake_redis, clock):
    mq = MultiQueue(RedisStore(fake_redis), prefix="multiqueue-test-1", retry_after_ms=500, clock=clock)

    await mq.push("images", {"id": "a"}, 250)
    await mq.push("images", {"id": "b"}, 500)
    assert await fake_redis.zscore('multiqueue-test-1queue:"images"', '{"id":"a"}') == 250
    assert await fake_redis.zscore("multiqueue-test-1depth", '"images"') == 2

    await mq.pop("images")
    assert await fake_redis.zscore('multiqueue-test-1retry:"images"', '{"id":"a"}') == clock.now + 500
    assert await fake_redis.zscore("multiqueue-test-1depth", '"images"') == 1
    assert await fake_redis.zcard('multiqueue-test-1queue:"images"') == 1


@pytest.mark.asyncio
async def test_redis_script_errors_are_rejected_transactions(fake_redis, clock):
    mq = MultiQueue(RedisStore(fake_redis), prefix="t:", clock=clock)
    await fake_redis.set("t:depth", "not-a-sorted-set")

    with pytest.raises(TransactionRejectedError):
        await mq.push("q", {"id": 1}, 1)
    assert await fake_redis.exists('t:queue:"q"') == 0


@pytest.mark.asyncio
async def test_redis_store_keeps_injected_client_open(fake_redis):
    store = RedisStore(fake_redis)
    mq = MultiQueue(store, prefix="t:")
    await mq.push("q", "job", 1)
    await mq.close()

    assert await fake_redis.ping()
    assert await fake_redis.zcard('t:queue:"q"') == 1


@pytest.mark.asyncio
async def test_redis_store_decodes_bytes_replies(clock):
    import fakeredis

    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
    mq = MultiQueue(RedisStore(client), prefix="t:", clock=clock)
    await mq.push({"q": 1}, {"job": 1}, 1)

    assert await mq.get_deepest() == {"q": 1}
    assert await mq.pop_any_with_queue() == ({"q": 1}, {"job": 1})
    assert (await mq.get_retry_depths())[{"q": 1}] == 1
    await client.aclose()
