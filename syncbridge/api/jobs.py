"""
Worker trigger - POST /jobs/ingest, called by an external scheduler (cron).
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from syncbridge.api.auth import require_cron_secret
from syncbridge.config import get_settings
from syncbridge.schemas.api_responses import IngestResult
from syncbridge.workers.ingest_worker import run_ingest_batch

logger = logging.getLogger(__name__)
router = APIRouter(tags=["jobs"])


@router.post(
    "/jobs/ingest",
    response_model=IngestResult,
    dependencies=[Depends(require_cron_secret)],
)
async def trigger_ingest():
    """
    Run one ingest batch.
    423 if a batch is already running, 504 if it exceeds the time budget.
    """
    settings = get_settings()
    try:
        metrics = await asyncio.wait_for(
            run_ingest_batch(settings=settings),
            timeout=settings.worker_max_duration_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("Ingest batch exceeded %ds", settings.worker_max_duration_seconds)
        raise HTTPException(status_code=504, detail="Worker exceeded time budget")
    except Exception as e:
        logger.error("Worker error: %s", str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    if metrics is None:
        return JSONResponse(status_code=423, content={"message": "Worker already running"})

    return IngestResult(**metrics)
