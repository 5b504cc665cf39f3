"""
Item administration - IdMap lookup and manual re-sync of one source record.
"""
import json
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.api.auth import require_admin
from syncbridge.database import get_db
from syncbridge.integrations.smartsuite import get_source_client
from syncbridge.models.connection import Connection
from syncbridge.schemas.api_responses import ItemLookupResponse, ResyncRequest, ResyncResponse
from syncbridge.services.event_store import create_event
from syncbridge.services.upsert import find_id_map
from syncbridge.utils.audit import record_audit
from syncbridge.utils.encryption import decrypt_value
from syncbridge.utils.errors import UpstreamError
from syncbridge.utils.logging import get_correlation_id
from syncbridge.utils.webhook_signatures import compute_payload_hash

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/items", tags=["items"], dependencies=[Depends(require_admin)])


async def _get_connection(db: AsyncSession, connection_id: str) -> Connection:
    try:
        connection_uuid = uuid.UUID(connection_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Connection not found")
    connection = await db.get(Connection, connection_uuid)
    if connection is None:
        raise HTTPException(status_code=404, detail="Connection not found")
    return connection


@router.get("/lookup", response_model=ItemLookupResponse)
async def lookup_item(
    connection_id: str = Query(...),
    external_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Which Webflow item a source record maps to."""
    connection = await _get_connection(db, connection_id)
    id_map = await find_id_map(
        db, connection.id, connection.source_type or "smartsuite", external_id,
    )
    if id_map is None:
        raise HTTPException(status_code=404, detail="Item not found")

    return ItemLookupResponse(
        connection_id=str(id_map.connection_id),
        external_source=id_map.external_source,
        external_id=id_map.external_id,
        target_item_id=id_map.target_item_id,
        created_at=id_map.created_at,
        last_synced_at=id_map.last_synced_at,
    )


@router.post("/resync", response_model=ResyncResponse)
async def resync_item(
    body: ResyncRequest,
    db: AsyncSession = Depends(get_db),
):
    """Fetch the current record from SmartSuite and queue it as a new event."""
    connection = await _get_connection(db, body.connection_id)
    if not connection.source_api_key_encrypted or not connection.source_table_id:
        raise HTTPException(status_code=400, detail="Connection has no source credentials")

    api_key = decrypt_value(connection.source_api_key_encrypted)
    try:
        record = await get_source_client().get_record(
            api_key,
            connection.source_table_id,
            body.external_id,
            account_id=connection.source_base_id,
        )
    except UpstreamError as e:
        logger.error(
            "Resync fetch failed: %s", str(e),
            extra={"connection_id": str(connection.id), "external_id": body.external_id},
        )
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail="Source record not found")
        raise HTTPException(status_code=502, detail="Source system request failed")

    payload = {"event_type": "manual_resync", "record_id": body.external_id, "data": record}
    event = await create_event(
        db,
        connection_id=connection.id,
        external_source=connection.source_type or "smartsuite",
        external_id=body.external_id,
        idempotency_key=f"manual-resync-{uuid.uuid4().hex}",
        payload=payload,
        payload_hash=compute_payload_hash(json.dumps(record, sort_keys=True, default=str).encode()),
        correlation_id=get_correlation_id(),
    )
    await record_audit(
        db,
        "item.resync",
        actor="admin",
        connection_id=connection.id,
        data={"event_id": str(event.id), "external_id": body.external_id},
    )

    logger.info(
        "Manual resync triggered",
        extra={"event_id": str(event.id), "external_id": body.external_id},
    )
    return ResyncResponse(event_id=str(event.id))
