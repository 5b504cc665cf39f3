"""
Upsert resolver - update the Webflow item already mapped to a source record,
or create one (resolving slug collisions) and record the IdMap row.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.integrations.target_base import TargetCMS
from syncbridge.models.id_map import IdMap
from syncbridge.services.queue_registry import ConnectionQueue
from syncbridge.utils.errors import SlugCollisionError, UpstreamError
from syncbridge.utils.timezone import utc_now

logger = logging.getLogger(__name__)

MAX_SLUG_ATTEMPTS = 10
MAX_SLUG_LENGTH = 100


def is_slug_collision(error: Exception) -> bool:
    """409, or any 4xx whose body mentions the slug."""
    if not isinstance(error, UpstreamError) or error.status_code is None:
        return False
    if error.status_code == 409:
        return True
    return 400 <= error.status_code < 500 and "slug" in error.body.lower()


def with_suffix(base_slug: str, n: int) -> str:
    """Append -n, trimming the base so the result stays within the slug length limit."""
    suffix = f"-{n}"
    base = base_slug[:MAX_SLUG_LENGTH - len(suffix)].rstrip("-")
    return f"{base}{suffix}"


async def find_id_map(
    db: AsyncSession,
    connection_id: uuid.UUID,
    external_source: str,
    external_id: str,
) -> Optional[IdMap]:
    result = await db.execute(
        select(IdMap).where(
            IdMap.connection_id == connection_id,
            IdMap.external_source == external_source,
            IdMap.external_id == external_id,
        )
    )
    return result.scalar_one_or_none()


async def upsert_item(
    db: AsyncSession,
    client: TargetCMS,
    queue: ConnectionQueue,
    *,
    connection_id: uuid.UUID,
    collection_id: str,
    external_source: str,
    external_id: str,
    field_data: dict,
    token: str,
) -> dict:
    """
    Create or update the target item for one source record.

    Returns {"target_item_id", "response", "warnings", "created"}.
    Each upstream write goes through `queue`, so it counts against the
    connection's write cap.
    """
    warnings: list[str] = []
    log_extra = {"connection_id": str(connection_id), "external_id": external_id}

    existing = await find_id_map(db, connection_id, external_source, external_id)
    if existing is not None:
        item_id = existing.target_item_id
        logger.info("Updating existing Webflow item %s", item_id, extra=log_extra)
        response = await queue.run(
            lambda: client.update_item(token, collection_id, item_id, field_data)
        )
        existing.last_synced_at = utc_now()
        await db.flush()
        return {
            "target_item_id": item_id,
            "response": response,
            "warnings": warnings,
            "created": False,
        }

    logger.info("Creating new Webflow item", extra=log_extra)
    base_slug = field_data.get("slug") or "item"
    slug = base_slug
    response = None

    for attempt in range(MAX_SLUG_ATTEMPTS):
        payload = {**field_data, "slug": slug}
        try:
            response = await queue.run(
                lambda: client.create_item(token, collection_id, payload)
            )
            break
        except UpstreamError as e:
            if not is_slug_collision(e):
                raise
            if attempt + 1 >= MAX_SLUG_ATTEMPTS:
                continue
            next_slug = with_suffix(base_slug, attempt + 1)
            warnings.append(f"Slug collision on '{slug}', resolved with suffix: {next_slug}")
            logger.warning(
                "Slug collision, retrying as %s", next_slug,
                extra={**log_extra, "attempt": attempt + 1},
            )
            slug = next_slug
    else:
        raise SlugCollisionError(
            f"Failed to resolve slug collision after {MAX_SLUG_ATTEMPTS} attempts"
        )

    item_id = str(response["id"])
    db.add(IdMap(
        connection_id=connection_id,
        external_source=external_source,
        external_id=external_id,
        target_item_id=item_id,
    ))
    await db.flush()

    return {
        "target_item_id": item_id,
        "response": response,
        "warnings": warnings,
        "created": True,
    }
