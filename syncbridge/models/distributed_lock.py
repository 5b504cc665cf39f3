"""
DistributedLock - single-row mutual exclusion record.
The primary key makes insert-if-absent atomic; expired rows may be taken over.
"""
from datetime import datetime, timezone
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from syncbridge.database import Base


class DistributedLock(Base):
    __tablename__ = "distributed_locks"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    acquired_by: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<DistributedLock {self.id} by={self.acquired_by[:8]}>"
