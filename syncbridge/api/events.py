"""
Event administration - list, inspect and replay sync events.
All routes require the admin bearer token.
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.api.auth import require_admin
from syncbridge.database import get_db
from syncbridge.models.event import Event
from syncbridge.schemas.api_responses import (
    EventDetail,
    EventListResponse,
    ReplayResponse,
    event_summary,
)
from syncbridge.services.event_store import list_events, replay_event
from syncbridge.utils.audit import record_audit
from syncbridge.utils.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/events", tags=["events"], dependencies=[Depends(require_admin)])


def _parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"{label} not found")


@router.get("", response_model=EventListResponse)
async def get_events(
    connection_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    external_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    connection_uuid = None
    if connection_id:
        try:
            connection_uuid = uuid.UUID(connection_id)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid connection_id")

    events, total = await list_events(
        db,
        connection_id=connection_uuid,
        status=status,
        external_id=external_id,
        limit=limit,
        offset=offset,
    )
    return EventListResponse(
        events=[event_summary(e) for e in events],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{event_id}", response_model=EventDetail)
async def get_event(
    event_id: str,
    db: AsyncSession = Depends(get_db),
):
    event = await db.get(Event, _parse_uuid(event_id, "Event"))
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event_summary(event, detail=True)


@router.post("/{event_id}/replay", response_model=ReplayResponse)
async def replay(
    event_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Re-queue a failed, dead-lettered or successful event with attempts reset."""
    try:
        event = await replay_event(db, _parse_uuid(event_id, "Event"))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Event not found")
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    await record_audit(
        db,
        "event.replayed",
        actor="admin",
        connection_id=event.connection_id,
        data={"event_id": str(event.id), "external_id": event.external_id},
    )
    return ReplayResponse(event_id=str(event.id), status=event.status)
