"""
Shared-secret bearer authentication for the worker trigger and admin endpoints.
"""
import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request

from syncbridge.config import get_settings

logger = logging.getLogger(__name__)


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization") or request.headers.get("authorization")
    if not header or not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip()


def _check_bearer(request: Request, secret: str, label: str) -> None:
    token = _bearer_token(request)
    # An unset secret never authenticates
    if not secret or not token or not hmac.compare_digest(token.encode(), secret.encode()):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Unauthorized %s request from %s", label, client_ip)
        raise HTTPException(status_code=401, detail="Unauthorized")


async def require_cron_secret(request: Request) -> None:
    """Dependency: Authorization: Bearer <CRON_SECRET>."""
    _check_bearer(request, get_settings().cron_secret, "worker")


async def require_admin(request: Request) -> None:
    """Dependency: Authorization: Bearer <ADMIN_API_TOKEN>."""
    _check_bearer(request, get_settings().admin_api_token, "admin")
