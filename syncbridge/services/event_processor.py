"""
Event processor - runs one queued event through the sync pipeline:

    mark processing -> decrypt token -> normalize -> map -> required fields
    -> coerce types -> rate-limited, retried upsert -> success | failed | dead_letter

Only this module moves an event out of `processing`. Every event uses its own
session, so one failing event never rolls back another.
"""
import logging
import random
import traceback
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import selectinload

from syncbridge.integrations.target_base import TargetCMS
from syncbridge.models.connection import Connection
from syncbridge.models.event import Event, EventStatus
from syncbridge.services.mapper import ExpressionEvaluator, MappingEngine, normalize_payload
from syncbridge.services.mappings import get_active_mapping
from syncbridge.services.queue_registry import RateLimitedExecutor
from syncbridge.services.upsert import upsert_item
from syncbridge.services.validator import coerce_field_data, validate_required_fields
from syncbridge.utils.encryption import decrypt_value
from syncbridge.utils.errors import MappingNotConfiguredError, NotFoundError, is_retriable_error
from syncbridge.utils.logging import generate_correlation_id, set_correlation_id
from syncbridge.utils.timezone import as_utc, utc_now

logger = logging.getLogger(__name__)

MAX_JITTER_RATIO = 0.3


def compute_retry_delay_ms(
    prior_attempts: int,
    base_backoff_ms: int,
    max_backoff_ms: int,
    rng: random.Random = random,
) -> int:
    """
    min(base * 2^prior_attempts, cap) plus up to 30% jitter, clamped to cap.
    """
    backoff = min(base_backoff_ms * (2 ** prior_attempts), max_backoff_ms)
    jitter = rng.random() * MAX_JITTER_RATIO * backoff
    return int(min(backoff + jitter, max_backoff_ms))


def _error_message(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


class EventProcessor:
    """Processes single events. Shared by the batch worker and tests."""

    def __init__(
        self,
        session_factory,
        executor: RateLimitedExecutor,
        target_client: TargetCMS,
        evaluator: Optional[ExpressionEvaluator] = None,
        settings=None,
    ):
        if settings is None:
            from syncbridge.config import get_settings
            settings = get_settings()
        self.session_factory = session_factory
        self.executor = executor
        self.target_client = target_client
        self.evaluator = evaluator
        self.settings = settings

    async def process_event(self, event_id: uuid.UUID) -> dict:
        """
        Process one event. Never raises for pipeline failures: they are
        recorded on the event and reported in the returned dict
        {"event_id", "success", "will_retry", "error", "duration_ms"}.
        """
        async with self.session_factory() as db:
            event = await db.get(Event, event_id, options=[selectinload(Event.connection)])
            if event is None:
                raise NotFoundError(f"Event not found: {event_id}")

            connection = event.connection
            prior_attempts = event.attempts or 0
            log_extra = {
                "event_id": str(event.id),
                "connection_id": str(event.connection_id),
                "external_id": event.external_id,
                "attempt": prior_attempts + 1,
            }
            set_correlation_id(event.correlation_id or generate_correlation_id())

            # Claim: only a queued or failed event can move to processing
            claimed = await db.execute(
                update(Event)
                .where(
                    Event.id == event.id,
                    Event.status.in_([EventStatus.QUEUED, EventStatus.FAILED]),
                )
                .values(
                    status=EventStatus.PROCESSING,
                    attempts=Event.attempts + 1,
                    updated_at=utc_now(),
                )
            )
            await db.commit()
            if claimed.rowcount != 1:
                logger.info("Event no longer pending, skipping", extra=log_extra)
                return {
                    "event_id": str(event_id),
                    "success": False,
                    "skipped": True,
                    "will_retry": False,
                    "error": None,
                    "duration_ms": None,
                }

            logger.info("Processing event", extra=log_extra)

            try:
                mapping = await get_active_mapping(db, connection.id)
                if mapping is None:
                    raise MappingNotConfiguredError("No mapping configured for connection")

                token = decrypt_value(connection.target_token_encrypted)
                record = normalize_payload(event.payload)

                engine = MappingEngine(db, self.evaluator)
                field_data, warnings = await engine.build_field_data(mapping, record, connection)
                logger.debug(
                    "Built field data (%d fields, %d warnings)",
                    len(field_data), len(warnings), extra=log_extra,
                )

                validate_required_fields(field_data, mapping.required_fields)
                field_data = coerce_field_data(field_data, mapping.field_types)

                async def _upsert(queue):
                    return await upsert_item(
                        db,
                        self.target_client,
                        queue,
                        connection_id=connection.id,
                        collection_id=connection.target_collection_id,
                        external_source=event.external_source,
                        external_id=event.external_id,
                        field_data=field_data,
                        token=token,
                    )

                result = await self.executor.execute_with_queue_and_retry(
                    _upsert,
                    connection_id=str(connection.id),
                    rate_limit_per_min=connection.rate_limit_per_min or self.settings.write_cap_per_minute,
                    max_retries=self._max_retries(connection),
                    retry_backoff_ms=connection.retry_backoff_ms or self.settings.retry_backoff_ms,
                    context=f"event:{event.id}",
                )

                all_warnings = warnings + result["warnings"]
                now = utc_now()
                duration_ms = int((now - as_utc(event.queued_at)).total_seconds() * 1000)

                await db.execute(
                    update(Event)
                    .where(Event.id == event.id)
                    .values(
                        status=EventStatus.SUCCESS,
                        processed_at=now,
                        duration_ms=duration_ms,
                        target_item_id=result["target_item_id"],
                        target_response=result["response"],
                        warnings=all_warnings or None,
                        partial_success=bool(all_warnings),
                        error=None,
                        error_traceback=None,
                        retry_after=None,
                        updated_at=now,
                    )
                )
                await db.execute(
                    update(Connection)
                    .where(Connection.id == connection.id)
                    .values(last_success_at=now, consecutive_errors=0)
                )
                await db.commit()

                logger.info(
                    "Event processed successfully (%d warnings)", len(all_warnings),
                    extra={**log_extra, "duration_ms": duration_ms},
                )
                return {
                    "event_id": str(event_id),
                    "success": True,
                    "will_retry": False,
                    "error": None,
                    "duration_ms": duration_ms,
                }
            except Exception as e:
                logger.error(
                    "Event processing failed: %s", _error_message(e),
                    extra={**log_extra, "error_code": getattr(e, "code", None)},
                )
                return await self.handle_error(
                    db,
                    event_id=event_id,
                    connection_id=log_extra["connection_id"],
                    prior_attempts=prior_attempts,
                    max_retries=self._max_retries(connection),
                    base_backoff_ms=connection.retry_backoff_ms or self.settings.retry_backoff_ms,
                    error=e,
                )

    def _max_retries(self, connection: Connection) -> int:
        if connection.max_retries is None:
            return self.settings.max_retry_attempts
        return connection.max_retries

    async def handle_error(
        self,
        db,
        *,
        event_id: uuid.UUID,
        connection_id: str,
        prior_attempts: int,
        max_retries: int,
        base_backoff_ms: int,
        error: BaseException,
    ) -> dict:
        """
        Retriable and within budget -> failed with retry_after.
        Otherwise -> dead_letter and the connection's error counters move.
        """
        await db.rollback()

        message = _error_message(error)
        trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        retriable = is_retriable_error(error)
        now = utc_now()
        log_extra = {
            "event_id": str(event_id),
            "connection_id": connection_id,
            "attempt": prior_attempts + 1,
            "error_code": getattr(error, "code", None),
        }

        if retriable and prior_attempts < max_retries:
            delay_ms = compute_retry_delay_ms(
                prior_attempts, base_backoff_ms, self.settings.max_retry_backoff_ms,
            )
            retry_after = now + timedelta(milliseconds=delay_ms)
            await db.execute(
                update(Event)
                .where(Event.id == event_id)
                .values(
                    status=EventStatus.FAILED,
                    error=message,
                    error_traceback=trace,
                    retry_after=retry_after,
                    updated_at=now,
                )
            )
            await db.commit()
            logger.warning("Event failed, will retry in %dms", delay_ms, extra=log_extra)
            return {
                "event_id": str(event_id),
                "success": False,
                "will_retry": True,
                "error": message,
                "duration_ms": None,
            }

        await db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(
                status=EventStatus.DEAD_LETTER,
                error=message,
                error_traceback=trace,
                retry_after=None,
                updated_at=now,
            )
        )
        await db.execute(
            update(Connection)
            .where(Connection.id == uuid.UUID(connection_id))
            .values(
                consecutive_errors=Connection.consecutive_errors + 1,
                last_error_at=now,
                last_error_message=message[:1000],
            )
        )
        await db.commit()
        logger.error(
            "Event moved to dead letter (%s)",
            "max_attempts" if retriable else "non_retriable",
            extra=log_extra,
        )
        return {
            "event_id": str(event_id),
            "success": False,
            "will_retry": False,
            "error": message,
            "duration_ms": None,
        }
