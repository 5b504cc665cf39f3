"""
Event store - creation, lookup, replay and queue queries for sync events.
State transitions made by the processor live in event_processor.
"""
import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.models.connection import Connection, ConnectionStatus
from syncbridge.models.event import Event, EventStatus
from syncbridge.utils.errors import ConflictError, NotFoundError
from syncbridge.utils.timezone import age_seconds, utc_now

logger = logging.getLogger(__name__)


async def find_by_idempotency_key(db: AsyncSession, idempotency_key: str) -> Optional[Event]:
    result = await db.execute(
        select(Event).where(Event.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def create_event(
    db: AsyncSession,
    *,
    connection_id: uuid.UUID,
    external_id: str,
    idempotency_key: str,
    payload: dict,
    payload_hash: str,
    external_source: str = "smartsuite",
    webhook_timestamp=None,
    correlation_id: Optional[str] = None,
) -> Event:
    """Insert a queued event. A duplicate key surfaces as IntegrityError on flush."""
    event = Event(
        connection_id=connection_id,
        external_source=external_source,
        external_id=external_id,
        idempotency_key=idempotency_key,
        payload=payload,
        payload_hash=payload_hash,
        webhook_timestamp=webhook_timestamp,
        correlation_id=correlation_id,
        status=EventStatus.QUEUED,
        attempts=0,
        queued_at=utc_now(),
    )
    db.add(event)
    await db.flush()
    return event


async def replay_event(db: AsyncSession, event_id: uuid.UUID) -> Event:
    """
    Put a finished event back in the queue with a fresh retry budget.
    Raises NotFoundError, or ConflictError while it is queued/processing.
    """
    event = await db.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    if event.status not in EventStatus.REPLAYABLE:
        raise ConflictError(f"Event is {event.status} and cannot be replayed")

    previous_status = event.status
    event.status = EventStatus.QUEUED
    event.attempts = 0
    event.error = None
    event.error_traceback = None
    event.retry_after = None
    await db.flush()

    logger.info(
        "Event replayed from %s", previous_status,
        extra={"event_id": str(event.id)},
    )
    return event


def _due_clause(now):
    return or_(
        Event.status == EventStatus.QUEUED,
        and_(
            Event.status == EventStatus.FAILED,
            or_(Event.retry_after.is_(None), Event.retry_after <= now),
        ),
    )


async def select_due_events(db: AsyncSession, batch_size: int) -> list[tuple]:
    """
    Up to batch_size due events on active connections, oldest first.
    Returns (id, connection_id, external_id) tuples.
    """
    now = utc_now()
    result = await db.execute(
        select(Event.id, Event.connection_id, Event.external_id)
        .join(Connection, Connection.id == Event.connection_id)
        .where(
            _due_clause(now),
            Connection.status == ConnectionStatus.ACTIVE,
        )
        .order_by(Event.queued_at.asc())
        .limit(batch_size)
    )
    return [tuple(row) for row in result.all()]


async def queue_stats(db: AsyncSession) -> dict:
    """
    queue_depth: queued + failed events on active connections.
    oldest_event_age: seconds since the oldest of those was queued.
    """
    pending = and_(
        Event.status.in_([EventStatus.QUEUED, EventStatus.FAILED]),
        Connection.status == ConnectionStatus.ACTIVE,
    )
    result = await db.execute(
        select(func.count(Event.id), func.min(Event.queued_at))
        .join(Connection, Connection.id == Event.connection_id)
        .where(pending)
    )
    depth, oldest = result.one()
    return {
        "queue_depth": int(depth or 0),
        "oldest_event_age": age_seconds(oldest),
    }


async def status_counts(db: AsyncSession) -> dict:
    """Per-status counts for events and connections."""
    event_rows = await db.execute(
        select(Event.status, func.count(Event.id)).group_by(Event.status)
    )
    connection_rows = await db.execute(
        select(Connection.status, func.count(Connection.id)).group_by(Connection.status)
    )
    return {
        "events": {status: count for status, count in event_rows.all()},
        "connections": {status: count for status, count in connection_rows.all()},
    }


async def recover_stale_processing(db: AsyncSession, stale_after_seconds: int) -> int:
    """
    Events stuck in `processing` (worker crashed or timed out mid-event) go
    back to `failed` with retry_after=now so the next batch retries them.
    """
    now = utc_now()
    cutoff = now - timedelta(seconds=stale_after_seconds)
    result = await db.execute(
        update(Event)
        .where(
            Event.status == EventStatus.PROCESSING,
            Event.updated_at < cutoff,
        )
        .values(
            status=EventStatus.FAILED,
            retry_after=now,
            error="Processing interrupted; rescheduled",
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount or 0
    if count:
        logger.warning("Recovered %d stale processing events", count)
    return count


async def list_events(
    db: AsyncSession,
    connection_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    external_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Event], int]:
    """Filtered page of events, newest first, plus the total match count."""
    filters = []
    if connection_id is not None:
        filters.append(Event.connection_id == connection_id)
    if status:
        filters.append(Event.status == status)
    if external_id:
        filters.append(Event.external_id == external_id)

    total = await db.scalar(select(func.count(Event.id)).where(*filters))
    result = await db.execute(
        select(Event)
        .where(*filters)
        .order_by(Event.queued_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), int(total or 0)
