"""
Connection model - a configured SmartSuite table -> Webflow collection pairing.
Credentials are stored encrypted (see syncbridge.utils.encryption).
Only `active` connections accept webhooks or get picked up by the worker.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from syncbridge.database import Base


class ConnectionStatus:
    """Connection status constants."""
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"
    ARCHIVED = "archived"


class Connection(Base):
    __tablename__ = "connections"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConnectionStatus.ACTIVE
    )  # active, paused, error, archived

    # Source (SmartSuite)
    source_type: Mapped[str] = mapped_column(String(50), nullable=False, default="smartsuite")
    source_base_id: Mapped[Optional[str]] = mapped_column(String(100))
    source_table_id: Mapped[Optional[str]] = mapped_column(String(100))
    source_api_key_encrypted: Mapped[Optional[str]] = mapped_column(Text)

    # Target (Webflow)
    target_type: Mapped[str] = mapped_column(String(50), nullable=False, default="webflow")
    target_site_id: Mapped[Optional[str]] = mapped_column(String(100))
    target_collection_id: Mapped[str] = mapped_column(String(100), nullable=False)
    target_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)

    # Ingress
    webhook_secret_encrypted: Mapped[str] = mapped_column(Text, nullable=False)

    # Write policy
    rate_limit_per_min: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    retry_backoff_ms: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)

    # Health
    last_success_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_error_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_error_message: Mapped[Optional[str]] = mapped_column(Text)
    consecutive_errors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    mappings: Mapped[list["Mapping"]] = relationship(back_populates="connection")

    __table_args__ = (
        Index("ix_connections_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Connection {self.name} ({self.status})>"
