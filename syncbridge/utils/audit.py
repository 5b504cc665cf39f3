"""
Audit sink - append-only record of operational actions.
"""
import logging
import uuid
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


async def record_audit(
    db: AsyncSession,
    action: str,
    actor: str = "system",
    connection_id: Optional[Union[str, uuid.UUID]] = None,
    data: Optional[dict] = None,
) -> AuditLog:
    """Add an AuditLog row to the session. The caller commits."""
    if isinstance(connection_id, str):
        connection_id = uuid.UUID(connection_id)

    entry = AuditLog(
        action=action,
        actor=actor,
        connection_id=connection_id,
        data=data,
    )
    db.add(entry)
    await db.flush()
    logger.debug("Audit: %s by %s", action, actor)
    return entry
