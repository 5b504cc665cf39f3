"""
Event model - one webhook occurrence tracked through its sync lifecycle.

State machine:
    queued -> processing -> success | failed | dead_letter
    failed -> processing (retry_after elapsed, picked up by the worker)
    failed | dead_letter | success -> queued (manual replay)

Events are never deleted; dead-lettered events stay replayable.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from syncbridge.database import Base


class EventStatus:
    """Event status constants."""
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"

    REPLAYABLE = (FAILED, DEAD_LETTER, SUCCESS)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    connection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("connections.id"), nullable=False
    )

    # Source occurrence
    external_source: Mapped[str] = mapped_column(String(50), nullable=False, default="smartsuite")
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    webhook_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EventStatus.QUEUED
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_after: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error: Mapped[Optional[str]] = mapped_column(Text)
    error_traceback: Mapped[Optional[str]] = mapped_column(Text)

    # Outcome
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    target_item_id: Mapped[Optional[str]] = mapped_column(String(100))
    target_response: Mapped[Optional[dict]] = mapped_column(JSONB)
    warnings: Mapped[Optional[list]] = mapped_column(JSONB)
    partial_success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    queued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    connection: Mapped["Connection"] = relationship()

    __table_args__ = (
        Index("ix_events_status_retry_after", "status", "retry_after"),
        Index("ix_events_connection_id", "connection_id"),
        Index("ix_events_queued_at", "queued_at"),
        Index("ix_events_external_id", "external_id"),
    )

    def __repr__(self) -> str:
        return f"<Event {str(self.id)[:8]} {self.status} attempts={self.attempts}>"
