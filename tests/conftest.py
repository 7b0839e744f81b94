"""
Shared test fixtures for the OrderGuard fraud mitigation API.

Provides:
- a fresh in-memory SQLite database per test
- async test client (httpx.AsyncClient against the FastAPI app)
- order and checkout payload factories
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict

import pytest
import pytest_asyncio

# Force test database before importing app
os.environ["DATABASE_PATH"] = ":memory:"

from httpx import AsyncClient, ASGITransport

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Sample data factories
# ---------------------------------------------------------------------------

def make_order(**overrides) -> Dict[str, Any]:
    """Build an order payload with sensible defaults."""
    base = {
        "phone": "01712345678",
        "ip": "203.0.113.10",
        "device_id": "dev-abc123",
        "first_name": "Rahim",
        "last_name": "Uddin",
        "address_1": "12 Lake Road",
        "city": "Dhaka",
        "postcode": "1205",
        "status": "processing",
    }
    base.update(overrides)
    return base


def make_checkout(**overrides) -> Dict[str, Any]:
    """Build a checkout evaluation payload."""
    base = {
        "phone": "01812345678",
        "ip": "198.51.100.7",
        "device_id": "dev-xyz789",
        "first_name": "Karim",
        "last_name": "Hossain",
        "address_1": "7 Park Avenue",
        "city": "Chattogram",
        "postcode": "4000",
    }
    base.update(overrides)
    return base


# ---------------------------------------------------------------------------
# Database / service fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db():
    """A fresh :memory: database with schema and default settings."""
    from orderguard import database

    database.close_connection()
    database.init_db()
    yield database.get_connection()
    database.close_connection()


@pytest.fixture
def store(db):
    from orderguard.services.signal_store import SignalStore

    return SignalStore(db)


@pytest.fixture
def history(db):
    from orderguard.services.order_history import OrderHistory

    return OrderHistory(db)


@pytest.fixture
def add_order(history):
    """Insert an order through OrderHistory; returns the stored OrderRecord."""
    from orderguard.models.orders import OrderRequest

    def _add(**overrides):
        payload = make_order(**overrides)
        payload.setdefault("created_at", NOW)
        return history.add_order(OrderRequest(**payload))

    return _add


# ---------------------------------------------------------------------------
# App / client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client():
    """Async test client that talks to the FastAPI app with a fresh in-memory DB.

    Each test gets an isolated database: we close any existing connection,
    then re-initialize the schema so tables exist in the new :memory: DB.
    """
    from orderguard import database
    from orderguard.main import app
    from orderguard.routers.fraud_scores import batch_guard

    database.close_connection()
    database.init_db()
    batch_guard.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    database.close_connection()
