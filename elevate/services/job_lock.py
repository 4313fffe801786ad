"""
Distributed job lease backed by Redis.

A lease guarantees at most one in-flight execution per job name across
processes and restarts: it is taken with `SET NX PX` and expires by itself
when its holder dies. While held, a heartbeat renews the lease; when renewal
fails the holding tick is cancelled. Release and renewal only touch the key
while it still holds our token, so an expired lease taken over by another
process is never released or extended by the previous holder.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from elevate.core.exceptions import SchedulerError


logger = structlog.get_logger(__name__)


class JobLock:
    """Redis lease keyed by job name."""

    def __init__(self, redis: Redis, prefix: str = "elevate:", ttl_seconds: int = 300):
        self.redis = redis
        self.prefix = prefix
        self.ttl_ms = int(ttl_seconds * 1000)
        self.logger = logger.bind(service="job_lock")

    def _key(self, name: str) -> str:
        return f"{self.prefix}lock:{name}"

    async def acquire(self, name: str) -> Optional[str]:
        """Try to take the lease of `name`. Returns the lease token, or None if held elsewhere."""
        token = uuid.uuid4().hex
        acquired = await self.redis.set(self._key(name), token, nx=True, px=self.ttl_ms)
        if not acquired:
            self.logger.debug("Lease held elsewhere", job=name)
            return None

        self.logger.debug("Lease acquired", job=name, token=token)
        return token

    async def release(self, name: str, token: str) -> bool:
        """Release the lease of `name` if `token` still owns it."""
        key = self._key(name)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current is None or _as_text(current) != token:
                    await pipe.unwatch()
                    self.logger.warning("Lease lost before release", job=name)
                    return False

                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
            except WatchError:
                self.logger.warning("Lease changed during release", job=name)
                return False

        self.logger.debug("Lease released", job=name)
        return True

    async def renew(self, name: str, token: str) -> bool:
        """Extend the lease of `name` by a full TTL if `token` still owns it."""
        key = self._key(name)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current is None or _as_text(current) != token:
                    await pipe.unwatch()
                    return False

                pipe.multi()
                pipe.pexpire(key, self.ttl_ms)
                await pipe.execute()
            except WatchError:
                return False

        return True

    async def is_locked(self, name: str) -> bool:
        return bool(await self.redis.exists(self._key(name)))

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[Optional[str]]:
        """
        Hold the lease of `name` for the duration of the block.

        Yields the token, or None when the lease is held elsewhere; callers
        must then skip their work. The lease is renewed every third of its
        TTL; if it is lost the block is cancelled and `SchedulerError` raised.
        """
        token = await self.acquire(name)
        if token is None:
            yield None
            return

        owner = asyncio.current_task()
        lost = asyncio.Event()
        heartbeat = asyncio.create_task(self._keep_alive(name, token, owner, lost))
        try:
            yield token
        except asyncio.CancelledError:
            if not lost.is_set():
                raise
            owner.uncancel()
            raise SchedulerError(
                f"Lease of {name} was lost during execution", {"job": name}
            )
        finally:
            heartbeat.cancel()
            await self.release(name, token)

    async def _keep_alive(
        self, name: str, token: str, owner: asyncio.Task, lost: asyncio.Event
    ) -> None:
        interval = self.ttl_ms / 3000
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self.renew(name, token)
            except RedisError as e:
                self.logger.warning("Lease renewal failed", job=name, error=str(e))
                renewed = False

            if not renewed:
                self.logger.error("Lease lost, cancelling job tick", job=name)
                lost.set()
                owner.cancel()
                return


def _as_text(value) -> str:
    return value.decode() if isinstance(value, bytes) else value
