"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import uuid
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool

from syncbridge.config import get_settings
from syncbridge.database import Base
from syncbridge.models.connection import Connection, ConnectionStatus
from syncbridge.models.mapping import Mapping

WEBHOOK_SECRET = "whsec_test_secret"
WEBFLOW_TOKEN = "wf_test_token"


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def engine():
    """In-memory SQLite engine shared by every session in a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """In-memory SQLite database for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("syncbridge.utils.redis_client.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.eval = AsyncMock(return_value=1)
        mock.return_value = redis_mock
        yield redis_mock


async def _create_connection(db, **overrides) -> Connection:
    """Persist an active connection with plaintext credentials (no ENCRYPTION_KEY)."""
    values = dict(
        name="Products",
        status=ConnectionStatus.ACTIVE,
        source_type="smartsuite",
        source_table_id="tbl_products",
        source_api_key_encrypted="ss_test_key",
        target_collection_id="col_products",
        target_token_encrypted=WEBFLOW_TOKEN,
        webhook_secret_encrypted=WEBHOOK_SECRET,
        rate_limit_per_min=50,
        max_retries=5,
        retry_backoff_ms=1000,
    )
    values.update(overrides)
    connection = Connection(**values)
    db.add(connection)
    await db.commit()
    return connection


async def _create_mapping(db, connection_id, field_map=None, **overrides) -> Mapping:
    values = dict(
        connection_id=connection_id,
        field_map=field_map if field_map is not None else {
            "name": {"type": "direct", "source": "title"},
        },
        required_fields=[],
        is_active=True,
    )
    values.update(overrides)
    mapping = Mapping(**values)
    db.add(mapping)
    await db.commit()
    return mapping


@pytest.fixture
def make_connection(db):
    """Factory: await make_connection(**overrides)."""
    async def _factory(**overrides):
        return await _create_connection(db, **overrides)
    return _factory


@pytest.fixture
def make_mapping(db):
    """Factory: await make_mapping(connection_id, field_map=None, **overrides)."""
    async def _factory(connection_id, field_map=None, **overrides):
        return await _create_mapping(db, connection_id, field_map, **overrides)
    return _factory


@pytest.fixture
async def connection(db):
    return await _create_connection(db)


@pytest.fixture
def sample_connection_id():
    return str(uuid.UUID("11111111-1111-1111-1111-111111111111"))
