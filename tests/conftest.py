"""
Shared fixtures: test environment, in-memory database, catalog and fakes.
"""

import os

# Settings are read at import time; configure before importing biztomate
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APPLE_SHARED_SECRET"] = "test-shared-secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["OPENAI_API_KEY"] = "test-openai-key"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from biztomate.catalog import get_catalog
from biztomate.database import create_tables
from biztomate.entitlements import (
    EntitlementResolver,
    EntitlementStore,
    QuotaPolicy,
    SubscriptionState,
)
from biztomate.purchases import PurchaseClient, ReceiptCache
from tests.fakes import FakeStore

TEST_DATABASE_URL = "sqlite+aiosqlite://"
USER_ID = "user-1"


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def catalog():
    return get_catalog()


@pytest.fixture
def resolver(catalog):
    return EntitlementResolver(catalog)


@pytest.fixture
def policy():
    return QuotaPolicy(free_quota=5, trial_quota=100)


@pytest.fixture
def receipt_cache(session_factory):
    return ReceiptCache(session_factory)


@pytest.fixture
def entitlement_store(session_factory):
    return EntitlementStore(session_factory)


@pytest.fixture
def subscription_state(entitlement_store, resolver, policy):
    return SubscriptionState(USER_ID, entitlement_store, resolver, policy, trial_days=7)


@pytest.fixture
def fake_store(catalog):
    return FakeStore(catalog.store_product_ids())


@pytest.fixture
def purchase_client(fake_store, receipt_cache, catalog):
    return PurchaseClient(fake_store, receipt_cache, USER_ID, catalog)
