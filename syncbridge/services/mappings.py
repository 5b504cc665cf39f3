"""
Mapping store - one active field mapping per connection.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.models.mapping import Mapping
from syncbridge.schemas.mapping_rules import dump_field_map, parse_field_map
from syncbridge.services.validator import validate_field_types
from syncbridge.utils.audit import record_audit

logger = logging.getLogger(__name__)


async def get_active_mapping(db: AsyncSession, connection_id: uuid.UUID) -> Optional[Mapping]:
    result = await db.execute(
        select(Mapping).where(
            Mapping.connection_id == connection_id,
            Mapping.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def activate_mapping(
    db: AsyncSession,
    connection_id: uuid.UUID,
    field_map: dict,
    slug_template: Optional[str] = None,
    required_fields: Optional[list] = None,
    field_types: Optional[dict] = None,
    actor: str = "system",
    source_types: Optional[dict] = None,
) -> Mapping:
    """
    Validate the rules, deactivate the current mapping and insert the new
    active one. Everything happens in the caller's transaction.
    Raises pydantic.ValidationError for malformed rules, and
    syncbridge ValidationError for unknown or incompatible field types
    (`source_types` maps target fields to their SmartSuite field types).
    """
    rules = parse_field_map(field_map)
    validate_field_types(field_types, source_types)

    await db.execute(
        update(Mapping)
        .where(Mapping.connection_id == connection_id, Mapping.is_active.is_(True))
        .values(is_active=False)
    )
    # Deactivation must reach the store before the insert (partial unique index)
    await db.flush()

    mapping = Mapping(
        connection_id=connection_id,
        field_map=dump_field_map(rules),
        slug_template=slug_template,
        required_fields=list(required_fields or []),
        field_types=field_types,
        is_active=True,
    )
    db.add(mapping)
    await db.flush()

    await record_audit(
        db,
        "mapping.activated",
        actor=actor,
        connection_id=connection_id,
        data={"mapping_id": str(mapping.id), "fields": list(rules.keys())},
    )
    logger.info(
        "Mapping activated with %d fields", len(rules),
        extra={"connection_id": str(connection_id)},
    )
    return mapping
