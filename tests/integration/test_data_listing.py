"""
Integration tests for DataLister with the in-memory document store.

Tests cover:
- The sentinel never appearing in listings or counts
- Sort tokens and paging
- Row decoration with @lastupdated_on
- Argument validation
"""

import logging
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from bson import ObjectId

from dbaas.docmeta_server.config import ListingConfig
from dbaas.docmeta_server.meta import DataLister, MetadataManager, listing
from dbaas.docmeta_server.meta.sentinel import ETAG_FIELD, LAST_UPDATED_FIELD, SENTINEL_ID
from dbaas.docmeta_server.store import CollectionRef, InMemoryDocumentStore

REF = CollectionRef("shop", "products")

PRODUCTS = [
    {"_id": 1, "name": "anvil", "price": 30},
    {"_id": 2, "name": "bolt", "price": 2},
    {"_id": 3, "name": "crate", "price": 12},
    {"_id": 4, "name": "drill", "price": 45},
    {"_id": 5, "name": "easel", "price": 12},
]


@pytest_asyncio.fixture
async def store():
    """Connected store holding products and their metadata."""
    store = InMemoryDocumentStore()
    await store.connect()
    await MetadataManager(store).upsert_sentinel(REF, {"description": "Products"})
    coll = store.collection(REF)
    for product in PRODUCTS:
        await coll.save(product)
    yield store
    await store.close()


@pytest.fixture
def lister(store):
    return DataLister(store, ListingConfig(default_page_size=2, max_page_size=10))


def ids(rows):
    return [row["_id"] for row in rows]


class TestSentinelHidden:
    """The metadata record is never a data record."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "sort_by",
        [None, ["-_id"], ["+_id"], ["name"], ["-price", "_id"], ["@created_on"], ["-@etag"]],
    )
    async def test_not_listed_under_any_sort(self, lister, sort_by):
        """No sort order or page brings the sentinel back."""
        seen = []
        for page in range(1, 5):
            seen.extend(await lister.list_data(REF, page=page, page_size=2, sort_by=sort_by))

        assert SENTINEL_ID not in ids(seen)
        assert sorted(ids(seen)) == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_sentinel_only_collection(self, store, lister):
        """A collection holding only metadata lists and counts as empty."""
        ref = CollectionRef("shop", "empty")
        await MetadataManager(store).upsert_sentinel(ref, {"a": 1})

        assert await lister.list_data(ref) == []
        assert await lister.collection_size(ref) == 0

    @pytest.mark.asyncio
    async def test_sentinel_from_bad_filter_is_dropped(self, lister, monkeypatch, caplog):
        """A data filter that lets the sentinel through is caught and logged."""
        monkeypatch.setattr(listing, "data_filter", lambda: {})

        with caplog.at_level(logging.ERROR):
            rows = await lister.list_data(REF, page_size=10)

        assert SENTINEL_ID not in ids(rows)
        assert ids(rows) == [1, 2, 3, 4, 5]
        assert "Data query returned the sentinel" in caplog.text

    @pytest.mark.asyncio
    async def test_collection_size(self, lister):
        """Size counts data records only."""
        assert await lister.collection_size(REF) == len(PRODUCTS)

    @pytest.mark.asyncio
    async def test_missing_collection(self, lister):
        """Unknown collections list and count as empty."""
        ref = CollectionRef("shop", "nothing")
        assert await lister.list_data(ref) == []
        assert await lister.collection_size(ref) == 0


class TestSortAndPaging:
    """Tests for sort tokens and paging."""

    @pytest.mark.asyncio
    async def test_default_order(self, lister):
        """Default is _id ascending with the configured page size."""
        assert ids(await lister.list_data(REF)) == [1, 2]
        assert ids(await lister.list_data(REF, page=3)) == [5]
        assert await lister.list_data(REF, page=4) == []

    @pytest.mark.asyncio
    async def test_plus_and_minus_differ(self, lister):
        """+price ascends, -price descends."""
        ascending = await lister.list_data(REF, page_size=10, sort_by=["+price", "_id"])
        descending = await lister.list_data(REF, page_size=10, sort_by=["-price", "_id"])

        assert ids(ascending) == [2, 3, 5, 1, 4]
        assert ids(descending) == [4, 1, 3, 5, 2]

    @pytest.mark.asyncio
    async def test_secondary_key(self, lister):
        """Ties on the first key are ordered by the next."""
        rows = await lister.list_data(REF, page_size=10, sort_by=["price", "-name"])
        assert ids(rows) == [2, 5, 3, 1, 4]


class TestDecoration:
    """Tests for @lastupdated_on on data rows."""

    @pytest.mark.asyncio
    async def test_rows_with_etag_are_decorated(self, store, lister):
        """Rows carrying a token get the derived timestamp; others do not."""
        when = datetime(2024, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        await store.collection(REF).save(
            {"_id": 6, "name": "file", "price": 5, ETAG_FIELD: ObjectId.from_datetime(when)}
        )
        await store.collection(REF).save({"_id": 7, "name": "gear", ETAG_FIELD: "legacy"})

        rows = {row["_id"]: row for row in await lister.list_data(REF, page_size=10)}

        assert rows[6][LAST_UPDATED_FIELD] == "2024-03-04T05:06:07Z"
        assert LAST_UPDATED_FIELD not in rows[7]
        assert LAST_UPDATED_FIELD not in rows[1]


class TestValidation:
    """Tests for list_data argument checks."""

    @pytest.mark.asyncio
    async def test_page_must_be_positive(self, lister):
        """Pages are 1-based."""
        with pytest.raises(ValueError, match="page"):
            await lister.list_data(REF, page=0)

    @pytest.mark.asyncio
    async def test_page_size_bounds(self, lister):
        """Page size must lie within 1 and the configured maximum."""
        with pytest.raises(ValueError, match="page_size"):
            await lister.list_data(REF, page_size=0)
        with pytest.raises(ValueError, match="page_size"):
            await lister.list_data(REF, page_size=11)

    @pytest.mark.asyncio
    async def test_bad_sort_token(self, lister):
        """A bare direction prefix is rejected."""
        with pytest.raises(ValueError):
            await lister.list_data(REF, sort_by=["-"])
