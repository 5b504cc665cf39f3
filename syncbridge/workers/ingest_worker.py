"""
Ingest worker - drains the event queue in lock-guarded batches.

One batch runs system-wide at a time ("worker:ingest" lock). Inside a batch,
events for the same source record run in queue order; everything else runs
concurrently up to WORKER_CONCURRENCY in-flight events.

Triggered by POST /jobs/ingest, or by the periodic loop when
INGEST_WORKER_ENABLED is set.
"""
import asyncio
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

LOCK_ID = "worker:ingest"
HEARTBEAT_KEY = "syncbridge:worker_health:ingest_worker"


def build_processor(settings=None):
    """Default EventProcessor wired to the process-wide queue registry."""
    from syncbridge.config import get_settings
    from syncbridge.database import async_session_factory
    from syncbridge.integrations.webflow import get_target_client
    from syncbridge.services.event_processor import EventProcessor
    from syncbridge.services.queue_registry import RateLimitedExecutor, get_queue_registry

    settings = settings or get_settings()
    executor = RateLimitedExecutor(
        get_queue_registry(), max_backoff_ms=settings.max_retry_backoff_ms,
    )
    return EventProcessor(
        async_session_factory, executor, get_target_client(), settings=settings,
    )


def group_by_record(rows: list[tuple]) -> list[list]:
    """
    Group (event_id, connection_id, external_id) rows by record, keeping
    queue order within and across groups.
    """
    groups: dict[tuple, list] = {}
    for event_id, connection_id, external_id in rows:
        groups.setdefault((connection_id, external_id), []).append(event_id)
    return list(groups.values())


async def run_ingest_batch(
    session_factory=None,
    lock_manager=None,
    processor=None,
    settings=None,
) -> Optional[dict]:
    """
    Run one batch. Returns None when another worker holds the lock, else
    {"processed", "succeeded", "failed", "duration_ms", "queue_depth", "oldest_event_age"}.
    The lock is released on every exit path.
    """
    from syncbridge.config import get_settings
    from syncbridge.services.event_store import (
        queue_stats,
        recover_stale_processing,
        select_due_events,
    )
    from syncbridge.utils.audit import record_audit
    from syncbridge.utils.locks import get_lock_manager

    settings = settings or get_settings()
    if session_factory is None:
        from syncbridge.database import async_session_factory
        session_factory = async_session_factory
    lock_manager = lock_manager or get_lock_manager(session_factory)

    token = await lock_manager.acquire(LOCK_ID, settings.lock_timeout_ms)
    if not token:
        logger.info("Worker already running", extra={"lock_id": LOCK_ID})
        return None

    start = time.monotonic()
    try:
        processor = processor or build_processor(settings)

        async with session_factory() as db:
            await recover_stale_processing(db, settings.stale_processing_seconds)
            await db.commit()
            rows = await select_due_events(db, settings.worker_batch_size)

        logger.info("Events to process: %d", len(rows))

        semaphore = asyncio.Semaphore(max(settings.worker_concurrency, 1))

        async def _run_group(event_ids: list) -> list[dict]:
            outcomes = []
            for event_id in event_ids:
                async with semaphore:
                    try:
                        outcomes.append(await processor.process_event(event_id))
                    except Exception as e:
                        logger.error(
                            "Event crashed outside the pipeline: %s", str(e),
                            exc_info=True, extra={"event_id": str(event_id)},
                        )
                        outcomes.append({"event_id": str(event_id), "success": False, "error": str(e)})
            return outcomes

        group_results = await asyncio.gather(
            *(_run_group(ids) for ids in group_by_record(rows)),
            return_exceptions=True,
        )

        outcomes = []
        for result in group_results:
            if isinstance(result, BaseException):
                logger.error("Event group crashed: %s", str(result))
                continue
            outcomes.extend(result)

        succeeded = sum(1 for o in outcomes if o.get("success"))
        processed = len(rows)

        async with session_factory() as db:
            stats = await queue_stats(db)
            metrics = {
                "processed": processed,
                "succeeded": succeeded,
                "failed": processed - succeeded,
                "duration_ms": int((time.monotonic() - start) * 1000),
                "queue_depth": stats["queue_depth"],
                "oldest_event_age": stats["oldest_event_age"],
            }
            await record_audit(db, "worker.completed", data=metrics)
            await db.commit()

        logger.info(
            "Worker completed: processed=%d succeeded=%d failed=%d queue_depth=%d",
            metrics["processed"], metrics["succeeded"], metrics["failed"], metrics["queue_depth"],
            extra={"duration_ms": metrics["duration_ms"]},
        )
        return metrics
    finally:
        await lock_manager.release(LOCK_ID, token)


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        from syncbridge.utils.redis_client import get_redis
        from datetime import datetime, timezone
        redis = await get_redis()
        await redis.set(
            HEARTBEAT_KEY,
            datetime.now(timezone.utc).isoformat(),
            ex=300,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


async def run_ingest_worker():
    """Periodic ingest loop. Runs continuously."""
    from syncbridge.config import get_settings
    settings = get_settings()
    logger.info("Ingest worker started (every %ds)", settings.ingest_poll_interval_seconds)

    while True:
        try:
            await asyncio.wait_for(
                run_ingest_batch(settings=settings),
                timeout=settings.worker_max_duration_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("Ingest batch exceeded %ds", settings.worker_max_duration_seconds)
        except Exception as e:
            logger.error("Ingest worker error: %s", str(e), exc_info=True)

        await _heartbeat()
        await asyncio.sleep(settings.ingest_poll_interval_seconds)
