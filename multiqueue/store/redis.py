from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis
from redis.commands.core import AsyncScript
from redis.exceptions import ResponseError

from ..exceptions import TransactionRejectedError
from ..keys import KeySpace
from .base import QueueStore

logger = logging.getLogger("multiqueue.store.redis")

# Scripts read every key they write before the first write: Redis does not
# roll back a failing script, so type errors must surface while nothing has
# changed yet.

# KEYS[1]: depth index, KEYS[2]: pending set, KEYS[3]: in-flight set
# ARGV[1]: queue id, ARGV[2]: priority, ARGV[3]: job
PUSH_SCRIPT: str = """
redis.call('ZCARD', KEYS[1])
redis.call('ZCARD', KEYS[3])
redis.call('ZADD', KEYS[2], ARGV[2], ARGV[3])
redis.call('ZREM', KEYS[3], ARGV[3])
redis.call('ZADD', KEYS[1], redis.call('ZCARD', KEYS[2]), ARGV[1])
return 1
"""

# KEYS[1]: in-flight set, KEYS[2]: pending set, KEYS[3]: depth index
# ARGV[1]: now, ARGV[2]: new deadline, ARGV[3]: queue id
# Returns the job, or nil when nothing is due or pending.
POP_SCRIPT: str = """
redis.call('ZCARD', KEYS[3])
local head = redis.call('ZRANGE', KEYS[1], 0, 0, 'WITHSCORES')
if head[1] and tonumber(head[2]) < tonumber(ARGV[1]) then
  redis.call('ZADD', KEYS[1], ARGV[2], head[1])
  return head[1]
end

local job = redis.call('ZPOPMIN', KEYS[2])
if job[1] then
  redis.call('ZADD', KEYS[1], ARGV[2], job[1])
  redis.call('ZADD', KEYS[3], redis.call('ZCARD', KEYS[2]), ARGV[3])
  return job[1]
end
return false
"""

# KEYS[1]: depth index
# ARGV[1]: pending key prefix, ARGV[2]: in-flight key prefix, ARGV[3]: now,
# ARGV[4]: new deadline, ARGV[5]: '1' if ARGV[6..] lists the candidate queues,
# '0' to scan every registered queue (deepest first).
# Returns {queue, job}, or nil.
POP_ANY_SCRIPT: str = """
redis.call('ZCARD', KEYS[1])
local queues
if ARGV[5] == '1' then
  queues = {}
  for i = 6, #ARGV do
    queues[#queues + 1] = ARGV[i]
  end
else
  queues = redis.call('ZREVRANGE', KEYS[1], 0, -1)
end

local function lowest_head(prefix)
  local bestQueue, bestJob, bestScore = nil, nil, nil
  for _, queue in ipairs(queues) do
    local head = redis.call('ZRANGE', prefix .. queue, 0, 0, 'WITHSCORES')
    if head[1] then
      local score = tonumber(head[2])
      if bestScore == nil or score < bestScore then
        bestQueue, bestJob, bestScore = queue, head[1], score
      end
    end
  end
  return bestQueue, bestJob, bestScore
end

local queue, job, score = lowest_head(ARGV[2])
if score ~= nil and score < tonumber(ARGV[3]) then
  redis.call('ZADD', ARGV[2] .. queue, ARGV[4], job)
  return {queue, job}
end

queue, job, score = lowest_head(ARGV[1])
if job then
  local pendingKey = ARGV[1] .. queue
  redis.call('ZREM', pendingKey, job)
  redis.call('ZADD', ARGV[2] .. queue, ARGV[4], job)
  redis.call('ZADD', KEYS[1], redis.call('ZCARD', pendingKey), queue)
  return {queue, job}
end
return false
"""

# KEYS[1]: depth index
# ARGV[1]: key prefix of the sets to count
# Returns a flat {queue, count, queue, count, ...} list.
DEPTHS_SCRIPT: str = """
local result = {}
for _, queue in ipairs(redis.call('ZRANGE', KEYS[1], 0, -1)) do
  result[#result + 1] = queue
  result[#result + 1] = redis.call('ZCARD', ARGV[1] .. queue)
end
return result
"""


def _text(value: Any) -> str:
    """Normalize a Redis reply to str for clients without decode_responses."""
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisStore(QueueStore):
    """Redis-backed store. Each transaction runs as one Lua script."""

    def __init__(
        self,
        client: aioredis.Redis | None = None,
        *,
        redis_url: str = "redis://localhost:6379",
        **redis_kwargs: Any,
    ):
        self._redis_url = redis_url
        self._redis_kwargs = redis_kwargs
        self._redis: aioredis.Redis | None = client
        self._owns_client = client is None
        self._scripts: dict[str, AsyncScript] = {}

    async def _ensure(self) -> aioredis.Redis:
        """Ensure Redis connection and registered scripts."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                **self._redis_kwargs,
            )
            logger.info(f"Connected Redis store at {self._redis_url}")
        if not self._scripts:
            self._scripts = {
                "push": self._redis.register_script(PUSH_SCRIPT),
                "pop": self._redis.register_script(POP_SCRIPT),
                "pop_any": self._redis.register_script(POP_ANY_SCRIPT),
                "depths": self._redis.register_script(DEPTHS_SCRIPT),
            }
        return self._redis

    async def _run(self, name: str, keys: list[str], args: list[Any]) -> Any:
        """Run a registered script as one atomic unit."""
        await self._ensure()
        try:
            return await self._scripts[name](keys=keys, args=args)
        except ResponseError as e:
            logger.error(f"Redis rejected {name} script: {e}")
            raise TransactionRejectedError(f"{name} transaction rejected: {e}") from e

    async def push(self, keys: KeySpace, queue: str, job: str, priority: float) -> None:
        """Add job to pending sorted set."""
        await self._run(
            "push",
            [keys.depth_key, keys.queue_key(queue), keys.retry_key(queue)],
            [queue, repr(priority), job],
        )

    async def pop(self, keys: KeySpace, queue: str, now: int, deadline: int) -> str | None:
        """Pop from a single queue."""
        job = await self._run(
            "pop",
            [keys.retry_key(queue), keys.queue_key(queue), keys.depth_key],
            [now, deadline, queue],
        )
        return _text(job) if job is not None else None

    async def complete(self, keys: KeySpace, queue: str, job: str) -> None:
        """Remove job from in-flight sorted set."""
        redis = await self._ensure()
        try:
            await redis.zrem(keys.retry_key(queue), job)
        except ResponseError as e:
            raise TransactionRejectedError(f"complete transaction rejected: {e}") from e

    async def pop_any(
        self,
        keys: KeySpace,
        queues: list[str] | None,
        now: int,
        deadline: int,
    ) -> tuple[str, str] | None:
        """Pop across queues, redeliveries first."""
        explicit = "1" if queues is not None else "0"
        result = await self._run(
            "pop_any",
            [keys.depth_key],
            [keys.queue_prefix, keys.retry_prefix, now, deadline, explicit, *(queues or [])],
        )
        if not result:
            return None
        queue, job = result
        return _text(queue), _text(job)

    async def deepest(self, keys: KeySpace) -> str | None:
        """Get deepest queue (ties go to the greatest encoded id)."""
        redis = await self._ensure()
        try:
            result = await redis.zrevrange(keys.depth_key, 0, 0)
        except ResponseError as e:
            raise TransactionRejectedError(f"deepest query rejected: {e}") from e
        return _text(result[0]) if result else None

    async def _depths(self, keys: KeySpace, prefix: str) -> dict[str, int]:
        flat = await self._run("depths", [keys.depth_key], [prefix])
        return {_text(flat[i]): int(flat[i + 1]) for i in range(0, len(flat), 2)}

    async def pending_depths(self, keys: KeySpace) -> dict[str, int]:
        """Get pending counts."""
        return await self._depths(keys, keys.queue_prefix)

    async def retry_depths(self, keys: KeySpace) -> dict[str, int]:
        """Get in-flight counts."""
        return await self._depths(keys, keys.retry_prefix)

    async def close(self) -> None:
        """Close Redis connection if this store opened it."""
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None
            self._scripts = {}
            logger.info("Redis store closed")
