"""
Error taxonomy for the sync pipeline.

Every error carries a stable `code` (safe to return to API callers) and a
`retriable` flag consumed by the retry executor and the event processor.
"""
import asyncio
import socket
from typing import Optional

import httpx

RETRIABLE_STATUS_CODES = {408, 429}
NON_RETRIABLE_STATUS_CODES = {400, 401, 403, 404, 422}


class SyncError(Exception):
    """Base class for all domain errors."""
    code = "sync_error"
    retriable = False


class AuthError(SyncError):
    """Bad webhook signature or timestamp. No event is created."""
    code = "unauthorized"


class BadRequestError(SyncError):
    """Unparseable webhook body or missing record id."""
    code = "bad_request"


class NotFoundError(SyncError):
    code = "not_found"


class ConnectionInactiveError(SyncError):
    code = "connection_inactive"


class ConflictError(SyncError):
    """Action not allowed in the current state (e.g. replaying a queued event)."""
    code = "conflict"


class ValidationError(SyncError):
    """Produced field data failed required-field or type validation."""
    code = "validation_error"


class MappingNotConfiguredError(SyncError):
    code = "mapping_not_configured"


class SlugCollisionError(SyncError):
    """Slug could not be made unique within the attempt cap."""
    code = "slug_collision"


class LockBusyError(SyncError):
    """Lock held by another live holder. Normal contention, not a failure."""
    code = "lock_busy"


class UpstreamError(SyncError):
    """Non-2xx response from SmartSuite or Webflow."""
    code = "upstream_error"

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body or ""

    @property
    def retriable(self) -> bool:
        if self.status_code is None:
            return False
        return self.status_code in RETRIABLE_STATUS_CODES or self.status_code >= 500


class UpstreamTimeoutError(UpstreamError):
    """Upstream call exceeded its timeout (ETIMEDOUT)."""
    code = "upstream_timeout"

    def __init__(self, message: str = "Request timeout"):
        super().__init__(message, status_code=None)

    @property
    def retriable(self) -> bool:
        return True


def is_retriable_error(error: BaseException) -> bool:
    """
    Classify an error as retriable.

    Retriable: 429, 408, >=500, timeouts and network failures
    (connection refused/reset, DNS). Not retriable: 400/401/403/404/422
    and anything unrecognised.
    """
    if isinstance(error, SyncError):
        return bool(error.retriable)

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status in RETRIABLE_STATUS_CODES or status >= 500

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True

    if isinstance(error, (ConnectionRefusedError, ConnectionResetError, socket.gaierror)):
        return True

    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status, int):
        if status in NON_RETRIABLE_STATUS_CODES:
            return False
        return status in RETRIABLE_STATUS_CODES or status >= 500

    return False
