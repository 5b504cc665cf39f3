"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from syncbridge.api.webhooks import router as webhooks_router
from syncbridge.api.jobs import router as jobs_router
from syncbridge.api.events import router as events_router
from syncbridge.api.items import router as items_router
from syncbridge.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(jobs_router)
api_router.include_router(events_router)
api_router.include_router(items_router)
api_router.include_router(health_router)
