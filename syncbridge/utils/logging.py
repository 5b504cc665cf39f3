"""
JSON line logging for the API and the ingest worker.

One object per line: timestamp, level, correlation_id, module, message, plus
any whitelisted extra fields (event/connection ids, attempt, ...). The
correlation id lives in a ContextVar: the HTTP middleware scopes it to a
request, the event processor restores the id captured at ingress.
"""
import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, TextIO

_correlation_id: ContextVar[Optional[str]] = ContextVar("syncbridge_correlation_id", default=None)

EXTRA_FIELDS = (
    "event_id",
    "connection_id",
    "external_id",
    "lock_id",
    "attempt",
    "status_code",
    "error_code",
    "duration_ms",
)

# Never emitted, even if someone adds them to EXTRA_FIELDS
SECRET_MARKERS = ("token", "secret", "password", "api_key", "authorization")

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(cid: Optional[str]) -> None:
    _correlation_id.set(cid)


def generate_correlation_id() -> str:
    """32-char hex id."""
    return uuid.uuid4().hex


@contextmanager
def correlation_scope(cid: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block, then restore the previous one."""
    cid = cid or generate_correlation_id()
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


def _is_secret(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in SECRET_MARKERS)


class StructuredJsonFormatter(logging.Formatter):
    def __init__(self, extra_fields: Iterable[str] = EXTRA_FIELDS):
        super().__init__()
        self.extra_fields = tuple(f for f in extra_fields if not _is_secret(f))

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update({
            name: getattr(record, name)
            for name in self.extra_fields
            if getattr(record, name, None) is not None
        })
        return json.dumps(entry, default=str)


def configure_structured_logging(log_level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """Route the root logger through a single JSON handler. Call once at startup."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
