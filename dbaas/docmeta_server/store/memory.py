"""
In-memory document store implementation for testing.

This module provides a simple in-memory store backend for:
- Unit tests
- Integration tests
- Local development without a MongoDB server

Invariants:
    - All data is lost on process exit
    - Each single operation is atomic (one asyncio lock around it)
    - The lock is never held across two operations
    - Documents are deep-copied on the way in and out

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the DocumentStore protocol
    - Mirror MongoDB semantics for every operator it accepts
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from bson import ObjectId

from .base import (
    CollectionRef,
    Document,
    SortSpec,
    StoreConnectionError,
)

logger = logging.getLogger(__name__)

OperationHook = Callable[[str, CollectionRef], Awaitable[None]]


@dataclass
class InMemoryCollectionData:
    """In-memory collection storage."""
    documents: List[Document] = field(default_factory=list)
    indexes: Dict[str, List[Tuple[str, int]]] = field(default_factory=dict)


def _is_operator_doc(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(k.startswith("$") for k in value)


def _equals(present: bool, value: Any, arg: Any) -> bool:
    # {field: None} also matches documents without the field
    if arg is None:
        return not present or value is None
    return present and value == arg


def _matches(doc: Document, query: Document) -> bool:
    for name, cond in query.items():
        present = name in doc
        value = doc.get(name)
        if not _is_operator_doc(cond):
            if not _equals(present, value, cond):
                return False
            continue
        for op, arg in cond.items():
            if op == "$eq":
                ok = _equals(present, value, arg)
            elif op == "$ne":
                ok = not _equals(present, value, arg)
            elif op == "$in":
                ok = any(_equals(present, value, a) for a in arg)
            elif op == "$nin":
                ok = not any(_equals(present, value, a) for a in arg)
            elif op == "$exists":
                ok = present == bool(arg)
            else:
                raise ValueError(f"Unsupported query operator: {op}")
            if not ok:
                return False
    return True


def _equality_fields(query: Document) -> Document:
    """Fields an upsert copies from its filter into the inserted document."""
    seeded = {}
    for name, cond in query.items():
        if not _is_operator_doc(cond):
            seeded[name] = copy.deepcopy(cond)
        elif "$eq" in cond:
            seeded[name] = copy.deepcopy(cond["$eq"])
    return seeded


def _apply_update(doc: Document, update: Document) -> None:
    if not _is_operator_doc(update):
        raise ValueError("update_one requires an update document with $ operators")
    for op, fields in update.items():
        if op == "$set":
            for name, value in fields.items():
                doc[name] = copy.deepcopy(value)
        elif op == "$unset":
            for name in fields:
                doc.pop(name, None)
        elif op == "$min":
            for name, value in fields.items():
                if name not in doc or _sort_key(value) < _sort_key(doc[name]):
                    doc[name] = copy.deepcopy(value)
        else:
            raise ValueError(f"Unsupported update operator: {op}")


def _project(doc: Document, projection: Optional[Document]) -> Document:
    if not projection:
        return copy.deepcopy(doc)

    include_id = bool(projection.get("_id", 1))
    others = {k: bool(v) for k, v in projection.items() if k != "_id"}

    if others and all(others.values()):
        result = {}
        if include_id and "_id" in doc:
            result["_id"] = doc["_id"]
        for name in others:
            if name in doc:
                result[name] = doc[name]
    elif others and not any(others.values()):
        result = {k: v for k, v in doc.items() if k not in others}
        if not include_id:
            result.pop("_id", None)
    elif not others:
        if include_id:
            # {"_id": 1} alone is an inclusion projection
            result = {"_id": doc["_id"]} if "_id" in doc else {}
        else:
            result = {k: v for k, v in doc.items() if k != "_id"}
    else:
        raise ValueError("Projection cannot mix inclusion and exclusion")

    return copy.deepcopy(result)


def _type_rank(value: Any) -> int:
    # BSON comparison order
    if value is None:
        return 1
    if isinstance(value, bool):
        return 8
    if isinstance(value, (int, float)):
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, dict):
        return 4
    if isinstance(value, list):
        return 5
    if isinstance(value, bytes):
        return 6
    if isinstance(value, ObjectId):
        return 7
    if isinstance(value, datetime):
        return 9
    return 10


def _sort_key(value: Any) -> Tuple[int, Any]:
    rank = _type_rank(value)
    if rank == 1:
        return (rank, 0)
    if rank in (4, 5, 10):
        return (rank, repr(value))
    return (rank, value)


def _sorted(docs: List[Document], sort: SortSpec) -> List[Document]:
    result = list(docs)
    for name, direction in reversed(list(sort)):
        result.sort(key=lambda d: _sort_key(d.get(name)), reverse=direction < 0)
    return result


class InMemoryCollection:
    """StoreCollection over the InMemoryDocumentStore's dictionaries."""

    def __init__(self, store: InMemoryDocumentStore, ref: CollectionRef) -> None:
        self._store = store
        self.ref = ref

    async def find_one(
        self,
        filter: Document,
        projection: Optional[Document] = None,
    ) -> Optional[Document]:
        async with self._store._operation("find_one", self.ref):
            data = self._store._get(self.ref)
            if data is None:
                return None
            for doc in data.documents:
                if _matches(doc, filter):
                    return _project(doc, projection)
            return None

    async def find(
        self,
        filter: Document,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Document]:
        async with self._store._operation("find", self.ref):
            data = self._store._get(self.ref)
            if data is None:
                return []
            docs = [d for d in data.documents if _matches(d, filter)]
            if sort:
                docs = _sorted(docs, sort)
            docs = docs[skip:]
            if limit:
                docs = docs[:limit]
            return [copy.deepcopy(d) for d in docs]

    async def update_one(
        self,
        filter: Document,
        update: Document,
        upsert: bool = False,
    ) -> int:
        async with self._store._operation("update_one", self.ref):
            data = self._store._get(self.ref)
            if data is not None:
                for doc in data.documents:
                    if _matches(doc, filter):
                        _apply_update(doc, update)
                        return 1
            if not upsert:
                return 0
            doc = _equality_fields(filter)
            _apply_update(doc, update)
            doc.setdefault("_id", ObjectId())
            self._store._get_or_create(self.ref).documents.append(doc)
            return 1

    async def find_one_and_replace(
        self,
        filter: Document,
        replacement: Document,
        upsert: bool = False,
        projection: Optional[Document] = None,
    ) -> Optional[Document]:
        if _is_operator_doc(replacement):
            raise ValueError("Replacement document must not contain $ operators")

        async with self._store._operation("find_one_and_replace", self.ref):
            data = self._store._get(self.ref)
            if data is not None:
                for i, doc in enumerate(data.documents):
                    if _matches(doc, filter):
                        new_doc = copy.deepcopy(replacement)
                        new_doc["_id"] = doc["_id"]
                        data.documents[i] = new_doc
                        return _project(doc, projection)
            if upsert:
                new_doc = _equality_fields(filter)
                new_doc.update(copy.deepcopy(replacement))
                new_doc.setdefault("_id", ObjectId())
                self._store._get_or_create(self.ref).documents.append(new_doc)
            return None

    async def find_one_and_delete(self, filter: Document) -> Optional[Document]:
        async with self._store._operation("find_one_and_delete", self.ref):
            data = self._store._get(self.ref)
            if data is None:
                return None
            for i, doc in enumerate(data.documents):
                if _matches(doc, filter):
                    del data.documents[i]
                    return copy.deepcopy(doc)
            return None

    async def save(self, document: Document) -> None:
        if "_id" not in document:
            raise ValueError("save() requires a document with an _id")

        async with self._store._operation("save", self.ref):
            data = self._store._get_or_create(self.ref)
            new_doc = copy.deepcopy(document)
            for i, doc in enumerate(data.documents):
                if doc["_id"] == new_doc["_id"]:
                    data.documents[i] = new_doc
                    return
            data.documents.append(new_doc)

    async def count(self, filter: Optional[Document] = None) -> int:
        async with self._store._operation("count", self.ref):
            data = self._store._get(self.ref)
            if data is None:
                return 0
            return sum(1 for d in data.documents if _matches(d, filter or {}))

    async def drop(self) -> None:
        async with self._store._operation("drop", self.ref):
            self._store._dbs[self.ref.db_name].pop(self.ref.collection_name, None)

    async def create_index(self, keys: SortSpec, name: str) -> str:
        async with self._store._operation("create_index", self.ref):
            data = self._store._get_or_create(self.ref)
            data.indexes[name] = list(keys)
            return name


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    This provides a fully functional document store that keeps all data
    in memory. Useful for:
    - Unit tests that need store behaviour without a MongoDB server
    - Integration tests that verify metadata semantics
    - Forcing interleavings between concurrent writers

    Attributes:
        operation_hook: Optional coroutine awaited before every collection
            operation, outside the store lock. Tests use it to pause one
            writer while another proceeds.
        operations: Log of (operation, ref) pairs in execution order

    Thread safety:
        Uses one asyncio lock per operation. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> coll = store.collection(CollectionRef("db", "things"))
        >>> await coll.save({"_id": 1, "name": "a"})
    """

    def __init__(self) -> None:
        """Initialize in-memory document store."""
        self._dbs: Dict[str, Dict[str, InMemoryCollectionData]] = defaultdict(dict)
        self._connected = False
        self._lock = asyncio.Lock()
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self.operation_hook: Optional[OperationHook] = None
        self.operations: List[Tuple[str, CollectionRef]] = []

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryDocumentStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._dbs.clear()
        self._failures.clear()
        logger.debug("InMemoryDocumentStore closed")

    def collection(self, ref: CollectionRef) -> InMemoryCollection:
        if not self._connected:
            raise StoreConnectionError("Not connected")
        return InMemoryCollection(self, ref)

    async def collection_exists(self, ref: CollectionRef) -> bool:
        if not self._connected:
            raise StoreConnectionError("Not connected")
        return self._get(ref) is not None

    def _get(self, ref: CollectionRef) -> Optional[InMemoryCollectionData]:
        return self._dbs.get(ref.db_name, {}).get(ref.collection_name)

    def _get_or_create(self, ref: CollectionRef) -> InMemoryCollectionData:
        return self._dbs[ref.db_name].setdefault(ref.collection_name, InMemoryCollectionData())

    def _operation(self, name: str, ref: CollectionRef) -> "_Operation":
        return _Operation(self, name, ref)

    # Testing helpers

    def inject_failure(self, operation: str, exception: Exception, times: int = 1) -> None:
        """Make the next `times` calls of `operation` raise `exception`.

        The failing call leaves the store untouched.
        """
        self._failures[operation].extend([exception] * times)

    def get_documents(self, ref: CollectionRef) -> List[Document]:
        """Get a copy of every document in a collection (testing helper)."""
        data = self._get(ref)
        if data is None:
            return []
        return copy.deepcopy(data.documents)

    def get_indexes(self, ref: CollectionRef) -> Dict[str, List[Tuple[str, int]]]:
        """Get index definitions of a collection (testing helper)."""
        data = self._get(ref)
        if data is None:
            return {}
        return dict(data.indexes)

    def count_operations(self, operation: str, ref: Optional[CollectionRef] = None) -> int:
        """Count logged calls of an operation (testing helper)."""
        return sum(
            1 for op, r in self.operations if op == operation and (ref is None or r == ref)
        )


class _Operation:
    """Async context wrapping one store operation: hook, failure, lock."""

    def __init__(self, store: InMemoryDocumentStore, name: str, ref: CollectionRef) -> None:
        self._store = store
        self._name = name
        self._ref = ref

    async def __aenter__(self) -> None:
        store = self._store
        if not store._connected:
            raise StoreConnectionError("Not connected")
        if store.operation_hook is not None:
            await store.operation_hook(self._name, self._ref)
        pending = store._failures.get(self._name)
        if pending:
            raise pending.pop(0)
        await store._lock.acquire()
        store.operations.append((self._name, self._ref))

    async def __aexit__(self, *exc_info: Any) -> None:
        self._store._lock.release()
