"""Pytest configuration and fixtures."""

import fnmatch
import os
import tempfile

import pytest

# Settings are read at import time, so the environment must be in place first
_TEST_DB_DIR = tempfile.mkdtemp(prefix="webhook_pipeline_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["ENVIRONMENT"] = "test"
os.environ["CACHE_ENABLED"] = "false"
os.environ["BACKGROUND_BACKEND"] = "inline"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOG_FORMAT"] = "text"

from httpx import ASGITransport, AsyncClient  # noqa: E402

from webhook_pipeline.core.database import engine, Base, AsyncSessionLocal  # noqa: E402
import webhook_pipeline.models.database  # noqa: E402,F401

TENANT = "tenant-a"


class FakeCache:
    """In-memory stand-in for the Redis client."""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ttl=None):
        self.store[key] = value
        return True

    async def clear_pattern(self, pattern):
        keys = [key for key in self.store if fnmatch.fnmatch(key, pattern)]
        for key in keys:
            del self.store[key]
        return len(keys)


class RecordingNotifier:
    """Notifier that records calls and can be told to fail."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def send(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.error is not None:
            raise self.error


@pytest.fixture
async def database():
    """Fresh schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db(database):
    """Database session for service-level tests."""
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def client(database):
    """HTTP client against the real application."""
    from webhook_pipeline.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def tenant_headers():
    return {"X-Tenant-ID": TENANT}


@pytest.fixture
def fake_cache():
    return FakeCache()


@pytest.fixture
def sample_order_payload():
    """Order webhook payload used across ingestion tests."""
    return {
        "event": "order.created",
        "data": {
            "order_id": "ord_1001",
            "amount": "49.90",
            "paid": True,
            "customer": {"email": "jane@example.com", "name": "Jane"},
            "items": [{"sku": "SKU-1", "qty": 2}],
            "created_at": "2026-01-05T10:15:00Z",
        },
    }


async def seed_dataset(db, rows):
    """Dataset fed by one connection, with records at given (created_at, data, status)."""
    from webhook_pipeline.models.database.connections import Connection, SignatureScheme
    from webhook_pipeline.models.database.datasets import Dataset
    from webhook_pipeline.models.database.records import DatasetRecord

    dataset = Dataset(tenant_id=TENANT, name="Orders")
    db.add(dataset)
    await db.flush()
    connection = Connection(
        tenant_id=TENANT, name="shop", dataset_id=dataset.id,
        signature_scheme=SignatureScheme.NONE, rate_limit_per_minute=60,
    )
    db.add(connection)
    await db.flush()

    for index, (created_at, data, status) in enumerate(rows):
        db.add(DatasetRecord(
            tenant_id=TENANT,
            dataset_id=dataset.id,
            connection_id=connection.id,
            raw_payload=data,
            extracted_data=data,
            payload_hash=f"hash-{index}",
            dedupe_key=f"hash-{index}",
            status=status,
            created_at=created_at,
        ))
    await db.commit()
    return dataset
