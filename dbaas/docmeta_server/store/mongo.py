"""
MongoDB document-store implementation.

This module provides the production backend for the document store, built
on pymongo's native asyncio client. It works with:
- MongoDB replica sets and sharded clusters
- MongoDB Atlas
- Any server speaking the MongoDB wire protocol with findAndModify support

Invariants:
    - One AsyncMongoClient per process, shared by every collection handle
    - find_one_and_* calls always return the pre-image (ReturnDocument.BEFORE)
    - pymongo exceptions never leak; they are wrapped into StoreError types

How to change safely:
    - Test against a real server before deploying (tests/e2e)
    - Keep behaviour identical to InMemoryDocumentStore
    - Do not add driver-level retries here; retry policy belongs to callers
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import (
    ConnectionFailure,
    ExecutionTimeout,
    NetworkTimeout,
    PyMongoError,
    ServerSelectionTimeoutError,
    WTimeoutError,
)

from .base import (
    CollectionRef,
    Document,
    SortSpec,
    StoreConnectionError,
    StoreError,
    StoreTimeoutError,
)

logger = logging.getLogger(__name__)


def redact_uri(uri: str) -> str:
    """Strip credentials from a MongoDB URI so it can be logged."""
    parts = urlsplit(uri)
    if "@" not in parts.netloc:
        return uri
    hosts = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, f"***@{hosts}", parts.path, parts.query, parts.fragment))


@contextmanager
def _translate_errors(operation: str, ref: CollectionRef | None = None) -> Iterator[None]:
    """Wrap pymongo exceptions raised by one store operation."""
    try:
        yield
    except (ExecutionTimeout, NetworkTimeout, WTimeoutError, ServerSelectionTimeoutError) as e:
        raise StoreTimeoutError(f"{operation} on {ref} timed out: {e}") from e
    except ConnectionFailure as e:
        raise StoreConnectionError(f"{operation} on {ref} lost connection: {e}") from e
    except PyMongoError as e:
        raise StoreError(f"{operation} on {ref} failed: {e}") from e


class MongoCollection:
    """StoreCollection backed by a pymongo AsyncCollection."""

    def __init__(self, collection: Any, ref: CollectionRef) -> None:
        self._coll = collection
        self.ref = ref

    async def find_one(
        self,
        filter: Document,
        projection: Document | None = None,
    ) -> Document | None:
        with _translate_errors("find_one", self.ref):
            return await self._coll.find_one(filter, projection)

    async def find(
        self,
        filter: Document,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int = 0,
    ) -> list[Document]:
        with _translate_errors("find", self.ref):
            cursor = self._coll.find(filter, skip=skip, limit=limit)
            if sort:
                cursor = cursor.sort(list(sort))
            return await cursor.to_list()

    async def update_one(
        self,
        filter: Document,
        update: Document,
        upsert: bool = False,
    ) -> int:
        with _translate_errors("update_one", self.ref):
            result = await self._coll.update_one(filter, update, upsert=upsert)
        if result.upserted_id is not None:
            return 1
        return result.matched_count

    async def find_one_and_replace(
        self,
        filter: Document,
        replacement: Document,
        upsert: bool = False,
        projection: Document | None = None,
    ) -> Document | None:
        with _translate_errors("find_one_and_replace", self.ref):
            return await self._coll.find_one_and_replace(
                filter,
                replacement,
                projection=projection,
                upsert=upsert,
                return_document=ReturnDocument.BEFORE,
            )

    async def find_one_and_delete(self, filter: Document) -> Document | None:
        with _translate_errors("find_one_and_delete", self.ref):
            return await self._coll.find_one_and_delete(filter)

    async def save(self, document: Document) -> None:
        if "_id" not in document:
            raise ValueError("save() requires a document with an _id")
        with _translate_errors("save", self.ref):
            await self._coll.replace_one({"_id": document["_id"]}, document, upsert=True)

    async def count(self, filter: Document | None = None) -> int:
        with _translate_errors("count", self.ref):
            return await self._coll.count_documents(filter or {})

    async def drop(self) -> None:
        with _translate_errors("drop", self.ref):
            await self._coll.drop()

    async def create_index(self, keys: SortSpec, name: str) -> str:
        with _translate_errors("create_index", self.ref):
            return await self._coll.create_index(list(keys), name=name)


class MongoDocumentStore:
    """MongoDB implementation of the DocumentStore protocol.

    Holds the single AsyncMongoClient for the process. Collection handles
    are cheap views over that client and may be created per call.

    Attributes:
        config: MongoConfig with connection settings

    Example:
        >>> config = MongoConfig(uri="mongodb://localhost:27017")
        >>> store = MongoDocumentStore(config)
        >>> await store.connect()
        >>> coll = store.collection(CollectionRef("shop", "orders"))
    """

    def __init__(self, config: Any) -> None:
        """Initialize MongoDB document store.

        Args:
            config: MongoConfig instance with connection settings
        """
        self.config = config
        self._client: AsyncMongoClient | None = None

    @property
    def is_connected(self) -> bool:
        """Whether a client has been created and pinged."""
        return self._client is not None

    async def connect(self) -> None:
        """Create the client and verify the server is reachable.

        Raises:
            StoreConnectionError: If the server cannot be reached
        """
        if self._client is not None:
            return

        client: AsyncMongoClient = AsyncMongoClient(
            self.config.uri,
            appname=self.config.app_name,
            serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
            connectTimeoutMS=self.config.connect_timeout_ms,
            maxPoolSize=self.config.max_pool_size,
        )
        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            await client.close()
            raise StoreConnectionError(f"Failed to connect to MongoDB: {e}") from e

        self._client = client
        logger.info(
            "Connected to MongoDB",
            extra={"uri": redact_uri(self.config.uri), "app_name": self.config.app_name},
        )

    async def close(self) -> None:
        """Close the client and its connection pool."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("MongoDB connection closed")

    def collection(self, ref: CollectionRef) -> MongoCollection:
        if self._client is None:
            raise StoreConnectionError("Not connected")
        return MongoCollection(self._client[ref.db_name][ref.collection_name], ref)

    async def collection_exists(self, ref: CollectionRef) -> bool:
        if self._client is None:
            raise StoreConnectionError("Not connected")
        with _translate_errors("collection_exists", ref):
            names = await self._client[ref.db_name].list_collection_names(
                filter={"name": ref.collection_name}
            )
        return ref.collection_name in names
