"""
Tests for syncbridge/api/health.py - liveness metrics and readiness.
"""
import json
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from syncbridge.api.health import health_check, readiness_check
from syncbridge.services.event_store import create_event
from syncbridge.utils.audit import record_audit
from syncbridge.utils.timezone import utc_now


def _broken_db():
    db = MagicMock()
    db.execute = AsyncMock(side_effect=ConnectionError("database down"))
    return db


class TestHealthCheck:
    async def test_healthy_with_metrics(self, db, connection):
        event = await create_event(
            db,
            connection_id=connection.id,
            external_id="r1",
            idempotency_key=uuid.uuid4().hex,
            payload={"record_id": "r1"},
            payload_hash="0" * 64,
        )
        event.queued_at = utc_now() - timedelta(seconds=30)
        await record_audit(db, "worker.completed", data={"processed": 0})
        await db.commit()

        result = await health_check(db=db)

        assert result["status"] == "healthy"
        checks = result["checks"]
        assert checks["database"] == "connected"
        assert checks["queueDepth"] == 1
        assert checks["oldestEventAge"] >= 29
        assert checks["workerLastRun"] is not None
        assert checks["connections"] == {"active": 1}
        assert checks["events"] == {"queued": 1}

    async def test_worker_never_ran(self, db):
        result = await health_check(db=db)
        assert result["checks"]["workerLastRun"] is None
        assert result["checks"]["queueDepth"] == 0

    async def test_database_down_returns_503(self):
        response = await health_check(db=_broken_db())

        assert response.status_code == 503
        body = json.loads(response.body)
        assert body["status"] == "unhealthy"
        assert "timestamp" in body


class TestReadinessCheck:
    async def test_ready(self, db, mock_redis):
        result = await readiness_check(db=db)
        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "redis": True}

    async def test_degraded_without_redis(self, db):
        with patch(
            "syncbridge.utils.redis_client.get_redis",
            new_callable=AsyncMock,
            side_effect=ConnectionError("redis down"),
        ):
            result = await readiness_check(db=db)

        assert result["status"] == "degraded"
        assert result["checks"] == {"database": True, "redis": False}

    async def test_degraded_without_database(self, mock_redis):
        result = await readiness_check(db=_broken_db())
        assert result["status"] == "degraded"
        assert result["checks"]["database"] is False
