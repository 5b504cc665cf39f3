"""
Health endpoints for load balancers and monitoring.

- GET /health       - queue depth, oldest queued age, worker last run, status counts
- GET /health/ready - can we reach the database and Redis?
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.database import get_db
from syncbridge.models.audit_log import AuditLog
from syncbridge.services.event_store import queue_stats, status_counts
from syncbridge.utils.timezone import as_utc

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _worker_last_run(db: AsyncSession):
    last_run = await db.scalar(
        select(AuditLog.created_at)
        .where(AuditLog.action == "worker.completed")
        .order_by(AuditLog.created_at.desc())
        .limit(1)
    )
    return as_utc(last_run).isoformat() if last_run else None


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
):
    """Service status with queue metrics. 503 when the database is unreachable."""
    try:
        await db.execute(text("SELECT 1"))
        stats = await queue_stats(db)
        counts = await status_counts(db)
        last_run = await _worker_last_run(db)
    except Exception as e:
        logger.error("Health check failed: %s", str(e))
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "timestamp": _now_iso()},
        )

    return {
        "status": "healthy",
        "timestamp": _now_iso(),
        "checks": {
            "database": "connected",
            "queueDepth": stats["queue_depth"],
            "oldestEventAge": stats["oldest_event_age"],
            "workerLastRun": last_run,
            "connections": counts["connections"],
            "events": counts["events"],
        },
    }


async def _database_reachable(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Readiness: database unreachable: %s", str(e))
        return False


async def _redis_reachable() -> bool:
    from syncbridge.utils.redis_client import get_redis
    try:
        redis = await get_redis()
        await redis.ping()
        return True
    except Exception as e:
        logger.warning("Readiness: redis unreachable: %s", str(e))
        return False


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    checks = {
        "database": await _database_reachable(db),
        "redis": await _redis_reachable(),
    }
    return {
        "status": "ready" if all(checks.values()) else "degraded",
        "checks": checks,
        "timestamp": _now_iso(),
    }
