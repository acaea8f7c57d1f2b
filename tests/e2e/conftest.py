"""
E2E test fixtures for DocMeta.

These tests require a reachable MongoDB server (MONGO_URI, default
mongodb://localhost:27017).
"""

import os
import uuid

import pytest
import pytest_asyncio

from dbaas.docmeta_server.config import MongoConfig
from dbaas.docmeta_server.store import CollectionRef, MongoDocumentStore

# Skip E2E tests if not in E2E mode
E2E_ENABLED = os.environ.get("DOCMETA_E2E_TESTS", "0") == "1"

pytestmark = pytest.mark.skipif(
    not E2E_ENABLED,
    reason="E2E tests disabled. Set DOCMETA_E2E_TESTS=1 to enable."
)


@pytest_asyncio.fixture
async def mongo_store():
    """Connected MongoDB store; skips when E2E mode is off."""
    if not E2E_ENABLED:
        pytest.skip("E2E tests disabled. Set DOCMETA_E2E_TESTS=1 to enable.")

    uri = os.environ.get("MONGO_URI", "mongodb://localhost:27017")
    store = MongoDocumentStore(MongoConfig(uri=uri, app_name="docmeta-e2e"))
    await store.connect()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def ref(mongo_store):
    """Fresh collection name, dropped after the test."""
    ref = CollectionRef("docmeta_e2e", f"coll_{uuid.uuid4().hex[:12]}")
    yield ref
    await mongo_store.collection(ref).drop()
