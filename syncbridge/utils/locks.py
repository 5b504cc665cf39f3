"""
Distributed locks - serialize worker runs across processes.

Two backends share one interface (acquire / release / extend):
- DatabaseLockManager: one row per lock id. The primary key makes the insert
  atomic; an expired row is taken over with a conditional UPDATE.
- RedisLockManager: SET NX PX with Lua compare-and-delete / compare-and-pexpire.

Locks are advisory and have no heartbeat. A crashed holder is recovered only
when its expiry passes and another caller takes the lock over.
"""
import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from syncbridge.models.distributed_lock import DistributedLock
from syncbridge.utils.timezone import utc_now

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_MS = 300_000
_MAX_ACQUIRE_ROUNDS = 3

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""

_EXTEND_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
else
    return 0
end
"""


def _new_token() -> str:
    return uuid.uuid4().hex


class DatabaseLockManager:
    """Lock rows in the distributed_locks table."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def acquire(self, lock_id: str, ttl_ms: int = DEFAULT_LOCK_TTL_MS) -> Optional[str]:
        """
        Return a holder token when the lock was taken (fresh or by expiry
        takeover), None when a live holder exists.
        """
        token = _new_token()

        for _ in range(_MAX_ACQUIRE_ROUNDS):
            now = utc_now()
            expires_at = now + timedelta(milliseconds=ttl_ms)

            async with self.session_factory() as session:
                session.add(DistributedLock(
                    id=lock_id,
                    acquired_by=token,
                    acquired_at=now,
                    expires_at=expires_at,
                ))
                try:
                    await session.commit()
                    logger.debug("Lock acquired", extra={"lock_id": lock_id})
                    return token
                except IntegrityError:
                    await session.rollback()

                result = await session.execute(
                    update(DistributedLock)
                    .where(
                        DistributedLock.id == lock_id,
                        DistributedLock.expires_at < now,
                    )
                    .values(acquired_by=token, acquired_at=now, expires_at=expires_at)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                if result.rowcount == 1:
                    logger.info("Took over expired lock", extra={"lock_id": lock_id})
                    return token

                holder = await session.scalar(
                    select(DistributedLock.acquired_by).where(DistributedLock.id == lock_id)
                )
                if holder is not None:
                    logger.debug("Lock held by another process", extra={"lock_id": lock_id})
                    return None

            # Row released between our insert and takeover attempt: try again
            logger.debug("Lock disappeared, retrying", extra={"lock_id": lock_id})

        return None

    async def release(self, lock_id: str, token: str) -> bool:
        """Delete the lock only if this token still holds it."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(DistributedLock).where(
                    DistributedLock.id == lock_id,
                    DistributedLock.acquired_by == token,
                )
            )
            await session.commit()

        if result.rowcount:
            logger.debug("Lock released", extra={"lock_id": lock_id})
            return True
        logger.warning("Lock was not held by this process", extra={"lock_id": lock_id})
        return False

    async def extend(self, lock_id: str, token: str, extra_ms: int) -> bool:
        """Move expiry to now + extra_ms if this token still holds the lock."""
        new_expiry = utc_now() + timedelta(milliseconds=extra_ms)
        async with self.session_factory() as session:
            result = await session.execute(
                update(DistributedLock)
                .where(
                    DistributedLock.id == lock_id,
                    DistributedLock.acquired_by == token,
                )
                .values(expires_at=new_expiry)
            )
            await session.commit()

        if result.rowcount:
            return True
        logger.warning("Cannot extend lock - not owned by this process", extra={"lock_id": lock_id})
        return False

    async def cleanup_expired(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(DistributedLock).where(DistributedLock.expires_at < utc_now())
            )
            await session.commit()

        count = result.rowcount or 0
        if count:
            logger.info("Cleaned up %d expired locks", count)
        return count


class RedisLockManager:
    """Locks as Redis keys with a PX expiry. Key TTL performs the takeover."""

    KEY_PREFIX = "syncbridge:lock:"

    def __init__(self, redis_getter=None):
        if redis_getter is None:
            from syncbridge.utils.redis_client import get_redis
            redis_getter = get_redis
        self._get_redis = redis_getter

    def _key(self, lock_id: str) -> str:
        return f"{self.KEY_PREFIX}{lock_id}"

    async def acquire(self, lock_id: str, ttl_ms: int = DEFAULT_LOCK_TTL_MS) -> Optional[str]:
        token = _new_token()
        try:
            redis = await self._get_redis()
            was_set = await redis.set(self._key(lock_id), token, nx=True, px=ttl_ms)
        except Exception as e:
            # Treated as busy; the worker lock is never bypassed
            logger.warning("Redis lock error for %s: %s", lock_id, str(e))
            return None

        if was_set:
            logger.debug("Lock acquired", extra={"lock_id": lock_id})
            return token
        return None

    async def release(self, lock_id: str, token: str) -> bool:
        try:
            redis = await self._get_redis()
            released = await redis.eval(_RELEASE_SCRIPT, 1, self._key(lock_id), token)
        except Exception as e:
            logger.warning("Redis lock release error for %s: %s", lock_id, str(e))
            return False
        return bool(released)

    async def extend(self, lock_id: str, token: str, extra_ms: int) -> bool:
        try:
            redis = await self._get_redis()
            extended = await redis.eval(_EXTEND_SCRIPT, 1, self._key(lock_id), token, extra_ms)
        except Exception as e:
            logger.warning("Redis lock extend error for %s: %s", lock_id, str(e))
            return False
        return bool(extended)


def get_lock_manager(session_factory=None):
    """Build the lock manager selected by LOCK_BACKEND."""
    from syncbridge.config import get_settings
    settings = get_settings()

    if settings.lock_backend == "redis":
        return RedisLockManager()

    if session_factory is None:
        from syncbridge.database import async_session_factory
        session_factory = async_session_factory
    return DatabaseLockManager(session_factory)
