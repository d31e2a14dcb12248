"""
Test configuration and fixtures.
Uses a temporary-file SQLite database so worker-pool sessions and the test
session see the same data. Mocks Redis for every test.
"""
import pytest
import uuid
from unittest.mock import AsyncMock, patch
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from hookgate.database import Base
import hookgate.models  # noqa: F401 - registers every table on Base.metadata
from hookgate.models.audit_log import AuditLogEntry
from hookgate.schemas.provider_config import ProviderConfig
from hookgate.services.dispatcher import HandlerRegistry
from hookgate.services.processor import AsyncProcessor
from hookgate.services.retry_scheduler import RetryPolicy
from hookgate.utils.metrics import _local_counters
from hookgate.utils.alerting import _local_cooldowns


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


PAYMENT_SECRET = "whsec_test_payment"
VCS_SECRET = "vcs_test_secret"
COMMERCE_SECRET = "commerce_test_secret"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hookgate.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        # WAL lets readers run while a worker session writes
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """Temp-file SQLite session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis — prevents real Redis calls in tests."""
    redis_mock = AsyncMock()
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.incrby = AsyncMock(return_value=1)
    redis_mock.ping = AsyncMock(return_value=True)
    with patch("hookgate.utils.redis_client.get_redis", new_callable=AsyncMock, return_value=redis_mock), \
         patch("hookgate.api.health.get_redis", new_callable=AsyncMock, return_value=redis_mock):
        yield redis_mock


@pytest.fixture(autouse=True)
def _reset_local_state():
    _local_counters.clear()
    _local_cooldowns.clear()
    yield
    _local_counters.clear()
    _local_cooldowns.clear()


@pytest.fixture
def payment_provider():
    return ProviderConfig(
        name="payment",
        secret=PAYMENT_SECRET,
        algorithm="hmac-sha256",
        encoding="hex",
        signature_header="Stripe-Signature",
        scheme="timestamped",
        timestamp_tolerance_seconds=300,
        event_id_path="id",
        topic_path="type",
    )


@pytest.fixture
def vcs_provider():
    return ProviderConfig(
        name="vcs",
        secret=VCS_SECRET,
        algorithm="hmac-sha1",
        encoding="hex",
        signature_header="X-Hub-Signature",
        signature_prefix="sha1=",
        event_id_path=None,
        event_id_header="X-GitHub-Delivery",
        topic_path=None,
        topic_header="X-GitHub-Event",
    )


@pytest.fixture
def commerce_provider():
    return ProviderConfig(
        name="commerce",
        secret=COMMERCE_SECRET,
        algorithm="hmac-sha256",
        encoding="base64",
        signature_header="X-Shopify-Hmac-Sha256",
        event_id_path="id",
        event_id_header="X-Shopify-Webhook-Id",
        topic_path=None,
        topic_header="X-Shopify-Topic",
    )


@pytest.fixture
def retry_policy():
    """Zero jitter so backoff assertions are exact."""
    return RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=60.0, max_attempts=5, jitter=0.0)


@pytest.fixture
def handlers():
    return HandlerRegistry()


@pytest.fixture
async def processor(session_factory, retry_policy):
    proc = AsyncProcessor(
        session_factory, retry_policy, workers=2, queue_size=10, handler_timeout=1.0,
    )
    await proc.start()
    yield proc
    await proc.stop(timeout=5.0)


@pytest.fixture
def read_trail(session_factory):
    """Read a webhook's audit statuses in a fresh session, oldest first."""
    async def _read(webhook_id: uuid.UUID) -> list[str]:
        async with session_factory() as session:
            result = await session.execute(
                select(AuditLogEntry.status)
                .where(AuditLogEntry.webhook_id == webhook_id)
                .order_by(AuditLogEntry.occurred_at, AuditLogEntry.id)
            )
            return list(result.scalars().all())
    return _read
