"""
Audit log - write-only trail of operational actions (worker runs, replays, resyncs).
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from syncbridge.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    connection_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("connections.id")
    )
    action: Mapped[str] = mapped_column(
        String(100), nullable=False
    )  # worker.completed, event.replayed, item.resync, mapping.activated
    actor: Mapped[str] = mapped_column(String(50), nullable=False, default="system")
    data: Mapped[Optional[dict]] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_audit_logs_action_created_at", "action", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} by={self.actor}>"
