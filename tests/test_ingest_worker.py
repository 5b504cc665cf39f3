"""
Tests for syncbridge/workers/ingest_worker.py - lock-guarded batches and per-record ordering.
"""
import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select, update

from syncbridge.config import get_settings
from syncbridge.models.audit_log import AuditLog
from syncbridge.models.distributed_lock import DistributedLock
from syncbridge.models.event import Event, EventStatus
from syncbridge.services.event_processor import EventProcessor
from syncbridge.services.event_store import create_event
from syncbridge.services.queue_registry import QueueRegistry, RateLimitedExecutor
from syncbridge.utils.locks import DatabaseLockManager
from syncbridge.utils.timezone import utc_now
from syncbridge.workers.ingest_worker import LOCK_ID, group_by_record, run_ingest_batch


async def _queue(db, connection, external_id, minutes_ago=0):
    event = await create_event(
        db,
        connection_id=connection.id,
        external_id=external_id,
        idempotency_key=uuid.uuid4().hex,
        payload={"record_id": external_id, "data": {"title": f"Item {external_id}"}},
        payload_hash="0" * 64,
    )
    event.queued_at = utc_now() - timedelta(minutes=minutes_ago)
    await db.commit()
    return event


def _fake_processor(success=True):
    processor = MagicMock()
    calls = []

    async def _process(event_id):
        calls.append(event_id)
        return {"event_id": str(event_id), "success": success}

    processor.process_event = AsyncMock(side_effect=_process)
    processor.calls = calls
    return processor


class TestGroupByRecord:
    def test_groups_keep_order(self):
        c = uuid.uuid4()
        rows = [(1, c, "a"), (2, c, "b"), (3, c, "a"), (4, uuid.uuid4(), "a")]
        assert group_by_record(rows) == [[1, 3], [2], [4]]


class TestRunIngestBatch:
    async def test_processes_due_events_and_reports(self, db, session_factory, connection):
        await _queue(db, connection, "r1", minutes_ago=2)
        await _queue(db, connection, "r2", minutes_ago=1)
        processor = _fake_processor()

        metrics = await run_ingest_batch(
            session_factory=session_factory,
            lock_manager=DatabaseLockManager(session_factory),
            processor=processor,
            settings=get_settings(),
        )

        assert metrics["processed"] == 2
        assert metrics["succeeded"] == 2
        assert metrics["failed"] == 0
        assert metrics["duration_ms"] >= 0
        assert metrics["queue_depth"] == 2  # fake processor leaves them queued
        assert len(processor.calls) == 2

        audit = (await db.execute(
            select(AuditLog).where(AuditLog.action == "worker.completed")
        )).scalar_one()
        assert audit.data["processed"] == 2

    async def test_lock_released_after_batch(self, db, session_factory, connection):
        await run_ingest_batch(
            session_factory=session_factory,
            lock_manager=DatabaseLockManager(session_factory),
            processor=_fake_processor(),
            settings=get_settings(),
        )
        row = await db.scalar(select(DistributedLock).where(DistributedLock.id == LOCK_ID))
        assert row is None

    async def test_busy_lock_returns_none(self, session_factory, connection):
        locks = DatabaseLockManager(session_factory)
        holder = await locks.acquire(LOCK_ID, 60_000)
        processor = _fake_processor()

        result = await run_ingest_batch(
            session_factory=session_factory,
            lock_manager=locks,
            processor=processor,
            settings=get_settings(),
        )

        assert result is None
        processor.process_event.assert_not_awaited()
        assert await locks.release(LOCK_ID, holder) is True

    async def test_lock_released_when_batch_crashes(self, session_factory, connection):
        locks = MagicMock()
        locks.acquire = AsyncMock(return_value="tok")
        locks.release = AsyncMock(return_value=True)
        broken_factory = MagicMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError):
            await run_ingest_batch(
                session_factory=broken_factory,
                lock_manager=locks,
                processor=_fake_processor(),
                settings=get_settings(),
            )
        locks.release.assert_awaited_once_with(LOCK_ID, "tok")

    async def test_failures_counted(self, db, session_factory, connection):
        await _queue(db, connection, "r1")
        metrics = await run_ingest_batch(
            session_factory=session_factory,
            lock_manager=DatabaseLockManager(session_factory),
            processor=_fake_processor(success=False),
            settings=get_settings(),
        )
        assert metrics["failed"] == 1

    async def test_same_record_events_run_in_queue_order(self, db, session_factory, connection):
        first = await _queue(db, connection, "r1", minutes_ago=3)
        other = await _queue(db, connection, "r2", minutes_ago=2)
        second = await _queue(db, connection, "r1", minutes_ago=1)
        processor = _fake_processor()

        await run_ingest_batch(
            session_factory=session_factory,
            lock_manager=DatabaseLockManager(session_factory),
            processor=processor,
            settings=get_settings(),
        )

        assert set(processor.calls) == {first.id, other.id, second.id}
        assert processor.calls.index(first.id) < processor.calls.index(second.id)

    async def test_distinct_records_run_concurrently_up_to_limit(self, db, session_factory, connection):
        for n in range(15):
            await _queue(db, connection, f"r{n}", minutes_ago=15 - n)

        in_flight = 0
        peak = 0
        processor = MagicMock()

        async def _process(event_id):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return {"event_id": str(event_id), "success": True}

        processor.process_event = AsyncMock(side_effect=_process)
        settings = get_settings().model_copy(update={"worker_concurrency": 4})

        metrics = await run_ingest_batch(
            session_factory=session_factory,
            lock_manager=DatabaseLockManager(session_factory),
            processor=processor,
            settings=settings,
        )

        assert metrics["processed"] == 15
        assert metrics["succeeded"] == 15
        assert 1 < peak <= 4

    async def test_stale_processing_recovered_first(self, db, session_factory, connection):
        event = await _queue(db, connection, "r1")
        await db.execute(
            update(Event)
            .where(Event.id == event.id)
            .values(status=EventStatus.PROCESSING, updated_at=utc_now() - timedelta(hours=2))
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        processor = _fake_processor()

        await run_ingest_batch(
            session_factory=session_factory,
            lock_manager=DatabaseLockManager(session_factory),
            processor=processor,
            settings=get_settings(),
        )

        assert processor.calls == [event.id]

    async def test_end_to_end_with_real_processor(self, db, session_factory, connection, make_mapping):
        await make_mapping(connection.id, slug_template="{{title}}")
        await _queue(db, connection, "r1", minutes_ago=2)
        await _queue(db, connection, "r1", minutes_ago=1)

        client = AsyncMock()
        client.create_item = AsyncMock(return_value={"id": "wf_item_1"})
        client.update_item = AsyncMock(return_value={"id": "wf_item_1"})
        settings = get_settings().model_copy(update={"worker_concurrency": 1})
        executor = RateLimitedExecutor(QueueRegistry(), sleep=AsyncMock())
        processor = EventProcessor(session_factory, executor, client, settings=settings)

        metrics = await run_ingest_batch(
            session_factory=session_factory,
            lock_manager=DatabaseLockManager(session_factory),
            processor=processor,
            settings=settings,
        )

        assert metrics["succeeded"] == 2
        assert metrics["queue_depth"] == 0
        client.create_item.assert_awaited_once()
        client.update_item.assert_awaited_once()
        statuses = (await db.execute(select(Event.status))).scalars().all()
        assert statuses == [EventStatus.SUCCESS, EventStatus.SUCCESS]
