"""
Document-store abstraction for DocMeta.

This module provides a pluggable store backend interface supporting:
- MongoDB (production, via pymongo's asyncio client)
- In-memory (for testing)

The store holds all state. Every component above it is stateless between
calls and receives the store handle explicitly.

Invariants:
    - Single-document operations are atomic
    - Multi-step protocols built on top must define their own compensation
    - Driver errors surface as StoreError subclasses

How to change safely:
    - New backends must implement the DocumentStore protocol
    - Run tests/e2e against a real server after changing the Mongo backend
"""

from .base import (
    ASCENDING,
    DESCENDING,
    CollectionRef,
    DocumentStore,
    StoreCollection,
    StoreConnectionError,
    StoreError,
    StoreTimeoutError,
    create_document_store,
)
from .memory import InMemoryDocumentStore
from .mongo import MongoDocumentStore

__all__ = [
    # Protocol and types
    "DocumentStore",
    "StoreCollection",
    "CollectionRef",
    "ASCENDING",
    "DESCENDING",
    "StoreError",
    "StoreConnectionError",
    "StoreTimeoutError",
    # Factory
    "create_document_store",
    # Implementations
    "MongoDocumentStore",
    "InMemoryDocumentStore",
]
