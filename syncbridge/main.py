"""
SyncBridge - webhook-driven record sync from SmartSuite into Webflow CMS.

Run with: uvicorn syncbridge.main:app
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from syncbridge.api.router import api_router
from syncbridge.config import get_settings
from syncbridge.utils.logging import configure_structured_logging, correlation_scope

logger = logging.getLogger("syncbridge")

SHUTDOWN_GRACE_SECONDS = 10.0
CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Scopes a correlation id to the request and echoes it on the response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_HEADER)) as cid:
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = cid
        return response


def _warn_missing_secrets(settings) -> None:
    if not settings.encryption_key:
        logger.warning(
            "ENCRYPTION_KEY not set - connection credentials are stored unencrypted"
        )
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not set - POST /jobs/ingest rejects every request")
    if not settings.admin_api_token:
        logger.warning("ADMIN_API_TOKEN not set - admin endpoints reject every request")


def _init_sentry(settings) -> None:
    if not settings.sentry_dsn:
        return
    try:
        import sentry_sdk
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            traces_sample_rate=0.1,
            environment=settings.app_env,
        )
        logger.info("Sentry enabled")
    except Exception as e:
        logger.warning("Could not initialise Sentry: %s", str(e))


async def _stop_tasks(tasks: list) -> None:
    for task in tasks:
        task.cancel()
    if not tasks:
        return
    _, still_running = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE_SECONDS)
    if still_running:
        logger.warning("%d background tasks did not stop in time", len(still_running))
        await asyncio.gather(*still_running, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("SyncBridge starting (env=%s)", settings.app_env)
    _warn_missing_secrets(settings)
    _init_sentry(settings)

    background: list[asyncio.Task] = []
    if settings.ingest_worker_enabled:
        from syncbridge.workers.ingest_worker import run_ingest_worker
        background.append(asyncio.create_task(run_ingest_worker()))
        logger.info("Polling ingest worker enabled")
    else:
        logger.info("Polling ingest worker off, batches run via POST /jobs/ingest")

    yield

    logger.info("SyncBridge stopping")
    await _stop_tasks(background)

    from syncbridge.utils.redis_client import close_redis
    await close_redis()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="SyncBridge",
        description="Webhook-driven SmartSuite to Webflow CMS sync",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)
    return application


app = create_app()
