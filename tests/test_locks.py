"""
Tests for syncbridge/utils/locks.py - database and Redis lock backends.
"""
from unittest.mock import AsyncMock, patch

from sqlalchemy import select

from syncbridge.models.distributed_lock import DistributedLock
from syncbridge.utils.locks import DatabaseLockManager, RedisLockManager, get_lock_manager


class TestDatabaseLockManager:
    async def test_acquire_and_release(self, session_factory):
        locks = DatabaseLockManager(session_factory)
        token = await locks.acquire("worker:ingest", 60_000)
        assert token

        assert await locks.release("worker:ingest", token) is True
        async with session_factory() as session:
            row = await session.scalar(select(DistributedLock).where(DistributedLock.id == "worker:ingest"))
        assert row is None

    async def test_live_holder_blocks_second_caller(self, session_factory):
        locks = DatabaseLockManager(session_factory)
        first = await locks.acquire("worker:ingest", 60_000)
        second = await locks.acquire("worker:ingest", 60_000)
        assert first
        assert second is None

    async def test_reacquire_after_release(self, session_factory):
        locks = DatabaseLockManager(session_factory)
        first = await locks.acquire("worker:ingest", 60_000)
        await locks.release("worker:ingest", first)
        second = await locks.acquire("worker:ingest", 60_000)
        assert second and second != first

    async def test_expired_lock_is_taken_over(self, session_factory):
        locks = DatabaseLockManager(session_factory)
        stale = await locks.acquire("worker:ingest", -1_000)
        fresh = await locks.acquire("worker:ingest", 60_000)

        assert fresh and fresh != stale
        async with session_factory() as session:
            holder = await session.scalar(
                select(DistributedLock.acquired_by).where(DistributedLock.id == "worker:ingest")
            )
        assert holder == fresh

    async def test_release_with_stale_token_is_noop(self, session_factory):
        locks = DatabaseLockManager(session_factory)
        stale = await locks.acquire("worker:ingest", -1_000)
        fresh = await locks.acquire("worker:ingest", 60_000)

        assert await locks.release("worker:ingest", stale) is False
        assert await locks.acquire("worker:ingest", 60_000) is None
        assert await locks.release("worker:ingest", fresh) is True

    async def test_extend_only_by_holder(self, session_factory):
        locks = DatabaseLockManager(session_factory)
        token = await locks.acquire("worker:ingest", 60_000)
        assert await locks.extend("worker:ingest", token, 120_000) is True
        assert await locks.extend("worker:ingest", "someone-else", 120_000) is False

    async def test_cleanup_expired(self, session_factory):
        locks = DatabaseLockManager(session_factory)
        await locks.acquire("a", -1_000)
        await locks.acquire("b", 60_000)
        assert await locks.cleanup_expired() == 1


class TestRedisLockManager:
    async def test_acquire_uses_set_nx_px(self, mock_redis):
        locks = RedisLockManager(redis_getter=AsyncMock(return_value=mock_redis))
        token = await locks.acquire("worker:ingest", 5_000)

        assert token
        mock_redis.set.assert_awaited_once_with(
            "syncbridge:lock:worker:ingest", token, nx=True, px=5_000,
        )

    async def test_busy_returns_none(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=None)
        locks = RedisLockManager(redis_getter=AsyncMock(return_value=mock_redis))
        assert await locks.acquire("worker:ingest") is None

    async def test_redis_error_is_treated_as_busy(self):
        locks = RedisLockManager(redis_getter=AsyncMock(side_effect=ConnectionError("down")))
        assert await locks.acquire("worker:ingest") is None

    async def test_release_compares_token(self, mock_redis):
        locks = RedisLockManager(redis_getter=AsyncMock(return_value=mock_redis))
        assert await locks.release("worker:ingest", "tok") is True
        args = mock_redis.eval.await_args.args
        assert args[1:] == (1, "syncbridge:lock:worker:ingest", "tok")

        mock_redis.eval = AsyncMock(return_value=0)
        assert await locks.release("worker:ingest", "tok") is False


class TestGetLockManager:
    def test_database_backend_default(self, session_factory):
        assert isinstance(get_lock_manager(session_factory), DatabaseLockManager)

    def test_redis_backend(self):
        with patch.dict("os.environ", {"LOCK_BACKEND": "redis"}):
            from syncbridge.config import get_settings
            get_settings.cache_clear()
            assert isinstance(get_lock_manager(), RedisLockManager)
