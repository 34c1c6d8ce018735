"""
Distributed job lock on Redis.

Only one server instance may run a given scheduled job at a time. The lock is
a key set with NX and a TTL; it is refreshed while the job runs and released
only by the instance that still owns it.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from doorstep.core.config import (
    DISABLE_JOB_LOCK,
    JOB_LOCK_FAIL_OPEN,
    JOB_LOCK_PREFIX,
)
from doorstep.core.errors import LockUnavailableError

log = logging.getLogger(__name__)

RELEASE_LOCK_LUA = (
    "if redis.call('get', KEYS[1]) == ARGV[1] then "
    "return redis.call('del', KEYS[1]) else return 0 end"
)
REFRESH_LOCK_LUA = (
    "if redis.call('get', KEYS[1]) == ARGV[1] then "
    "return redis.call('pexpire', KEYS[1], ARGV[2]) else return 0 end"
)


def create_redis_client(url: Optional[str]):
    """Builds an asyncio Redis client, or None when no URL is configured."""
    if not url:
        return None
    return aioredis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=15,
        socket_timeout=30,
        retry_on_timeout=True,
        health_check_interval=30,
    )


@dataclass
class LockResult:
    acquired: bool
    result: Any = None


class JobLock:
    def __init__(
        self,
        redis_client=None,
        prefix: str = JOB_LOCK_PREFIX,
        fail_open: bool = JOB_LOCK_FAIL_OPEN,
        disabled: bool = DISABLE_JOB_LOCK,
    ):
        self.redis = redis_client
        self.prefix = prefix
        self.fail_open = fail_open
        self.disabled = disabled

    def key(self, name: str) -> str:
        return f"{self.prefix}:{name.strip()}"

    async def acquire(self, name: str, token: str, ttl_ms: int) -> bool:
        """SET key token NX PX ttl. Raises LockUnavailableError if the store can't be used."""
        if self.disabled:
            raise LockUnavailableError("job locks disabled via DISABLE_JOB_LOCK")
        if self.redis is None:
            raise LockUnavailableError("REDIS_URL not set")
        try:
            return bool(await self.redis.set(self.key(name), token, nx=True, px=ttl_ms))
        except (RedisError, OSError) as exc:
            raise LockUnavailableError(str(exc)) from exc

    async def release(self, name: str, token: str) -> bool:
        """Deletes the lock only if `token` still owns it."""
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.eval(RELEASE_LOCK_LUA, 1, self.key(name), token))
        except (RedisError, OSError) as exc:
            log.warning(f"[JobLock] Failed to release lock {self.key(name)}: {exc}")
            return False

    async def get_owner(self, name: str) -> Optional[str]:
        """Token currently holding the lock, if any."""
        if self.redis is None:
            return None
        return await self.redis.get(self.key(name))

    async def refresh(self, name: str, token: str, ttl_ms: int) -> bool:
        return bool(await self.redis.eval(REFRESH_LOCK_LUA, 1, self.key(name), token, str(ttl_ms)))

    async def _keep_alive(self, name: str, token: str, ttl_ms: int, every_ms: int) -> None:
        while True:
            await asyncio.sleep(every_ms / 1000)
            try:
                if not await self.refresh(name, token, ttl_ms):
                    log.warning(f"[JobLock] Lost ownership of {self.key(name)}")
                    return
            except (RedisError, OSError) as exc:
                log.warning(f"[JobLock] Failed to refresh lock {self.key(name)}: {exc}")

    async def run(
        self,
        name: str,
        ttl_ms: int,
        fn: Callable[[], Awaitable[Any]],
        fail_open: Optional[bool] = None,
        refresh_ms: Optional[int] = None,
    ) -> LockResult:
        """
        Runs `fn` while holding the named lock.

        Returns LockResult(acquired=False) without calling `fn` when another
        instance holds the lock. When the store is unavailable the fail-open
        policy decides between running unlocked and skipping the run.
        """
        fail_open = self.fail_open if fail_open is None else fail_open
        token = uuid.uuid4().hex
        try:
            acquired = await self.acquire(name, token, ttl_ms)
        except LockUnavailableError as exc:
            if fail_open:
                log.warning(f"[JobLock] {name}: lock store unavailable ({exc}); running without lock")
                return LockResult(acquired=True, result=await fn())
            log.warning(f"[JobLock] {name}: lock store unavailable ({exc}); skipping run")
            return LockResult(acquired=False)

        if not acquired:
            log.debug(f"[JobLock] {name}: another instance holds the lock")
            return LockResult(acquired=False)

        every_ms = refresh_ms if refresh_ms is not None else max(1000, ttl_ms // 2)
        keeper = asyncio.create_task(self._keep_alive(name, token, ttl_ms, every_ms))
        try:
            return LockResult(acquired=True, result=await fn())
        finally:
            keeper.cancel()
            try:
                await keeper
            except asyncio.CancelledError:
                pass
            await self.release(name, token)
