"""
Webhook ingress - SmartSuite record change notifications.

Checks, in order:
1. Connection exists (404) and is active (403)
2. HMAC-SHA256 signature over the raw body (401)
3. Timestamp freshness when X-Timestamp is sent (401)
4. JSON body with an identifiable record id (400)
5. Idempotency key: duplicates return 200 with the existing event

New events are stored as `queued`; the ingest worker does the rest.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.config import get_settings
from syncbridge.database import get_db
from syncbridge.models.connection import Connection, ConnectionStatus
from syncbridge.schemas.api_responses import WebhookAccepted
from syncbridge.services.event_store import create_event, find_by_idempotency_key
from syncbridge.utils.encryption import decrypt_value
from syncbridge.utils.logging import get_correlation_id
from syncbridge.utils.webhook_signatures import (
    compute_payload_hash,
    derive_idempotency_key,
    parse_timestamp,
    verify_signature,
    verify_timestamp,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


def extract_external_id(payload: Any) -> Optional[str]:
    """Record id from `record_id`, `id` or `data.id`, in that order."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    candidates = [payload.get("record_id"), payload.get("id")]
    if isinstance(data, dict):
        candidates.append(data.get("id"))
    for candidate in candidates:
        if candidate is not None and str(candidate).strip():
            return str(candidate)
    return None


async def _load_active_connection(db: AsyncSession, connection_id: str) -> Connection:
    try:
        connection_uuid = uuid.UUID(connection_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Connection not found")

    connection = await db.get(Connection, connection_uuid)
    if connection is None:
        raise HTTPException(status_code=404, detail="Connection not found")
    if connection.status != ConnectionStatus.ACTIVE:
        logger.info(
            "Webhook rejected: connection is %s", connection.status,
            extra={"connection_id": connection_id},
        )
        raise HTTPException(status_code=403, detail="Connection is not active")
    return connection


def _validate_signature(connection: Connection, request: Request, body: bytes) -> None:
    """Raise 401 unless X-Signature matches the connection's webhook secret."""
    secret = decrypt_value(connection.webhook_secret_encrypted)
    if not verify_signature(secret, request.headers.get("X-Signature"), body):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning(
            "Invalid webhook signature from %s", client_ip,
            extra={"connection_id": str(connection.id)},
        )
        raise HTTPException(status_code=401, detail="Invalid webhook signature")


def _validate_timestamp(timestamp: Optional[str]) -> None:
    if timestamp is None:
        return
    settings = get_settings()
    if not verify_timestamp(
        timestamp,
        max_age_seconds=settings.webhook_max_age_seconds,
        max_future_skew_seconds=settings.webhook_max_future_skew_seconds,
    ):
        logger.warning("Webhook timestamp outside window: %s", timestamp)
        raise HTTPException(status_code=401, detail="Invalid webhook timestamp")


def _duplicate_response(event_id) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={"message": "Duplicate event", "eventId": str(event_id)},
    )


@router.post("/hooks/{connection_id}", status_code=202, response_model=WebhookAccepted)
async def receive_webhook(
    connection_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Verify and enqueue one SmartSuite webhook."""
    connection = await _load_active_connection(db, connection_id)

    body = await request.body()
    _validate_signature(connection, request, body)

    timestamp = request.headers.get("X-Timestamp")
    _validate_timestamp(timestamp)

    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    external_id = extract_external_id(payload)
    if external_id is None:
        raise HTTPException(status_code=400, detail="Missing record id")

    idempotency_key = derive_idempotency_key(
        str(connection.id),
        external_id,
        timestamp=timestamp,
        supplied_key=request.headers.get("X-Idempotency-Key"),
    )

    existing = await find_by_idempotency_key(db, idempotency_key)
    if existing is not None:
        logger.info(
            "Duplicate webhook", extra={"event_id": str(existing.id), "external_id": external_id},
        )
        return _duplicate_response(existing.id)

    webhook_timestamp = None
    if timestamp is not None:
        ts = parse_timestamp(timestamp)
        webhook_timestamp = datetime.fromtimestamp(ts, tz=timezone.utc)

    try:
        async with db.begin_nested():
            event = await create_event(
                db,
                connection_id=connection.id,
                external_source=connection.source_type or "smartsuite",
                external_id=external_id,
                idempotency_key=idempotency_key,
                payload=payload,
                payload_hash=compute_payload_hash(body),
                webhook_timestamp=webhook_timestamp,
                correlation_id=get_correlation_id(),
            )
    except IntegrityError:
        # Concurrent delivery of the same key won the insert
        existing = await find_by_idempotency_key(db, idempotency_key)
        if existing is None:
            raise
        return _duplicate_response(existing.id)

    logger.info(
        "Webhook queued",
        extra={
            "event_id": str(event.id),
            "connection_id": str(connection.id),
            "external_id": external_id,
        },
    )
    return WebhookAccepted(event_id=str(event.id), status="queued")
