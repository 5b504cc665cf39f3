"""
Database models - import all models here so Alembic can discover them.
"""
from syncbridge.models.connection import Connection, ConnectionStatus
from syncbridge.models.mapping import Mapping
from syncbridge.models.event import Event, EventStatus
from syncbridge.models.id_map import IdMap
from syncbridge.models.distributed_lock import DistributedLock
from syncbridge.models.audit_log import AuditLog

__all__ = [
    "Connection",
    "ConnectionStatus",
    "Mapping",
    "Event",
    "EventStatus",
    "IdMap",
    "DistributedLock",
    "AuditLog",
]
