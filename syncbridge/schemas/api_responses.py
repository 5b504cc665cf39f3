"""
API request/response schemas. Wire format is camelCase.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WebhookAccepted(_CamelModel):
    event_id: str
    status: str = "queued"


class IngestResult(_CamelModel):
    processed: int
    succeeded: int
    failed: int
    duration_ms: int
    queue_depth: int
    oldest_event_age: int


class EventSummary(_CamelModel):
    id: str
    connection_id: str
    external_source: str
    external_id: str
    idempotency_key: str
    status: str
    attempts: int
    retry_after: Optional[datetime] = None
    error: Optional[str] = None
    queued_at: datetime
    processed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    target_item_id: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    partial_success: bool = False


class EventDetail(EventSummary):
    payload: Any = None
    payload_hash: str
    correlation_id: Optional[str] = None
    target_response: Optional[dict] = None


class EventListResponse(_CamelModel):
    events: list[EventSummary]
    total: int
    limit: int
    offset: int


class ReplayResponse(_CamelModel):
    event_id: str
    status: str
    message: str = "Event replayed"


class ItemLookupResponse(_CamelModel):
    connection_id: str
    external_source: str
    external_id: str
    target_item_id: str
    created_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None


class ResyncRequest(_CamelModel):
    connection_id: str
    external_id: str = Field(..., min_length=1)


class ResyncResponse(_CamelModel):
    event_id: str
    status: str = "queued"
    message: str = "Manual resync triggered"


def event_summary(event, detail: bool = False) -> EventSummary:
    """Build the API view of an Event row."""
    fields = dict(
        id=str(event.id),
        connection_id=str(event.connection_id),
        external_source=event.external_source,
        external_id=event.external_id,
        idempotency_key=event.idempotency_key,
        status=event.status,
        attempts=event.attempts or 0,
        retry_after=event.retry_after,
        error=event.error,
        queued_at=event.queued_at,
        processed_at=event.processed_at,
        duration_ms=event.duration_ms,
        target_item_id=event.target_item_id,
        warnings=list(event.warnings or []),
        partial_success=bool(event.partial_success),
    )
    if not detail:
        return EventSummary(**fields)
    return EventDetail(
        **fields,
        payload=event.payload,
        payload_hash=event.payload_hash,
        correlation_id=event.correlation_id,
        target_response=event.target_response,
    )
