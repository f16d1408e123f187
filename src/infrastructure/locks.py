"""
Redis-based distributed lock.

Guards the expiry sweep so that only one process runs it at a time, however
many API instances start the background loop.  Acquire is ``SET NX EX``;
release is a Lua check-and-delete so a holder whose TTL lapsed cannot drop
a lock some other instance has since taken.

    async with DistributedLock(redis, "expiry_reaper", ttl_seconds=60):
        ...  # raises LockNotAcquired when another instance holds it
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    """Another holder owns the lock."""

    def __init__(self, key: str):
        super().__init__(f"Could not acquire lock: {key}")
        self.key = key


class DistributedLock:
    def __init__(self, client: aioredis.Redis, key: str, ttl_seconds: int = 30):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        return bool(await self.redis.set(self.key, self.token, nx=True, ex=self.ttl))

    async def release(self) -> bool:
        """Delete the key if this holder still owns it.  False if the TTL lapsed."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if not await self.release():
            logger.warning(
                "Lock %s expired before release; held longer than %ds", self.key, self.ttl
            )
