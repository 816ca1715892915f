"""
Multiqueue - Priority job queues with visibility timeouts over Redis.

Usage:
    from multiqueue import MultiQueue, RedisStore

    mq = MultiQueue(RedisStore(redis_url="redis://localhost:6379"), "jobs:", retry_after_ms=30_000)

    await mq.push("images", {"id": "img-1"}, priority=time.time())
    job = await mq.pop_any()
    ...
    await mq.complete("images", job)
"""

from .codec import Codec, JsonCodec
from .engine import MultiQueue, MultiQueueOptions
from .exceptions import (
    MultiQueueError,
    SerializationError,
    StoreUnavailableError,
    TransactionRejectedError,
)
from .fastapi.lifecycle import setup_multiqueue
from .keys import DEFAULT_PREFIX, KeySpace
from .models import Dispatch, QueueDepths
from .store.base import QueueStore
from .store.memory import MemoryStore
from .store.redis import RedisStore
from .store.sqlite import SqliteStore
from .version import __version__
from .worker import Worker

__all__ = [
    # Version
    "__version__",
    # Core
    "MultiQueue",
    "MultiQueueOptions",
    "Dispatch",
    "QueueDepths",
    "KeySpace",
    "DEFAULT_PREFIX",
    # Encoding
    "Codec",
    "JsonCodec",
    # Stores
    "QueueStore",
    "MemoryStore",
    "RedisStore",
    "SqliteStore",
    # Worker
    "Worker",
    # FastAPI
    "setup_multiqueue",
    # Exceptions
    "MultiQueueError",
    "SerializationError",
    "StoreUnavailableError",
    "TransactionRejectedError",
]
