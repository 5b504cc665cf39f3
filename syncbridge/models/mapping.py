"""
Mapping model - field-mapping configuration for a connection.
Versioned by is_active: at most one active row per connection (partial unique index).
Superseded rows are kept unchanged for history.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index, text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from syncbridge.database import Base


class Mapping(Base):
    __tablename__ = "mappings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    connection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("connections.id"), nullable=False
    )

    # Ordered target field name -> rule config (see syncbridge.schemas.mapping_rules)
    field_map: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    slug_template: Mapped[Optional[str]] = mapped_column(String(500))
    required_fields: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    # Target field name -> Webflow field type (PlainText, Email, Link, ...)
    field_types: Mapped[Optional[dict]] = mapped_column(JSONB)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    connection: Mapped["Connection"] = relationship(back_populates="mappings")

    __table_args__ = (
        Index(
            "uq_mappings_active_per_connection",
            "connection_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Mapping {str(self.id)[:8]} active={self.is_active}>"
