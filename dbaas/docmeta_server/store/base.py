"""
Base protocol and types for the document-store abstraction.

This module defines the DocumentStore and StoreCollection protocols that all
backends must implement, along with the collection reference type and the
store error hierarchy.

Invariants:
    - Every StoreCollection method is atomic on a single document
    - No method composes several documents into one atomic step
    - Driver exceptions are wrapped into StoreError subclasses

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the in-memory backend behaviourally identical to MongoDB
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
    TYPE_CHECKING,
)
import logging

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


class StoreError(Exception):
    """Base exception for document-store operations."""
    pass


class StoreConnectionError(StoreError):
    """Connection to the store failed or is not established."""
    pass


class StoreTimeoutError(StoreError):
    """Store operation timed out."""
    pass


@dataclass(frozen=True)
class CollectionRef:
    """Address of one collection in one logical database.

    Attributes:
        db_name: Logical database name
        collection_name: Collection name within the database
    """
    db_name: str
    collection_name: str

    def __str__(self) -> str:
        return f"{self.db_name}.{self.collection_name}"


@runtime_checkable
class StoreCollection(Protocol):
    """Protocol for a handle on a single collection.

    Filters, updates and projections use MongoDB query syntax. Backends
    only need to support the subset the metadata layer issues:
    equality and $ne/$eq/$in/$nin/$exists filters, $set/$unset/$min updates,
    inclusion or exclusion projections.
    """

    @abstractmethod
    async def find_one(
        self,
        filter: Document,
        projection: Optional[Document] = None,
    ) -> Optional[Document]:
        """Return the first matching document, or None."""
        ...

    @abstractmethod
    async def find(
        self,
        filter: Document,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Document]:
        """Return matching documents.

        Args:
            filter: Query filter
            sort: Sequence of (field, direction) pairs
            skip: Number of documents to skip
            limit: Maximum number of documents (0 = no limit)
        """
        ...

    @abstractmethod
    async def update_one(
        self,
        filter: Document,
        update: Document,
        upsert: bool = False,
    ) -> int:
        """Apply a merge-only update to the first matching document.

        Returns:
            Number of documents matched or upserted (0 or 1)
        """
        ...

    @abstractmethod
    async def find_one_and_replace(
        self,
        filter: Document,
        replacement: Document,
        upsert: bool = False,
        projection: Optional[Document] = None,
    ) -> Optional[Document]:
        """Atomically replace (or insert) a document.

        Returns:
            The document as it was before the replacement, or None if
            nothing matched (in which case an upsert inserted it)
        """
        ...

    @abstractmethod
    async def find_one_and_delete(self, filter: Document) -> Optional[Document]:
        """Atomically remove a document and return it, or None."""
        ...

    @abstractmethod
    async def save(self, document: Document) -> None:
        """Write a document verbatim, replacing any document with its _id."""
        ...

    @abstractmethod
    async def count(self, filter: Optional[Document] = None) -> int:
        """Count matching documents."""
        ...

    @abstractmethod
    async def drop(self) -> None:
        """Drop the collection with all its documents and indexes."""
        ...

    @abstractmethod
    async def create_index(self, keys: SortSpec, name: str) -> str:
        """Create an index and return its name."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document-store backends.

    A single DocumentStore is acquired at process start and passed to
    every component that needs it. Implementations must be safe to share
    between concurrent coroutines.

    Example:
        >>> store = MongoDocumentStore(config.mongo)
        >>> await store.connect()
        >>> coll = store.collection(CollectionRef("shop", "orders"))
        >>> await coll.count()
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            StoreConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection and its resources."""
        ...

    @abstractmethod
    def collection(self, ref: CollectionRef) -> StoreCollection:
        """Get a handle on a collection (it need not exist yet).

        Raises:
            StoreConnectionError: If not connected
        """
        ...

    @abstractmethod
    async def collection_exists(self, ref: CollectionRef) -> bool:
        """Whether the underlying collection exists."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_document_store(config: "ServerConfig") -> DocumentStore:
    """Factory function to create a document store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate DocumentStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryDocumentStore
    from .mongo import MongoDocumentStore

    if config.store_backend == StoreBackend.MONGO:
        return MongoDocumentStore(config.mongo)
    elif config.store_backend == StoreBackend.MEMORY:
        return InMemoryDocumentStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
