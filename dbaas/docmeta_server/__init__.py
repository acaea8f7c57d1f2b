"""
DocMeta Server - collection metadata for a shared document store.

This package manages logical collections inside MongoDB, each carrying a
hidden sentinel record with collection-level metadata:
- @created_on, written once when the sentinel is first created
- @etag, a fresh ObjectId on every write, used for optimistic concurrency
- Arbitrary user properties, replaced or merged on each write

Architecture:
    ┌─────────────┐     ┌─────────────────┐     ┌─────────────────┐
    │  API layer  │────▶│ MetadataManager │────▶│  DocumentStore  │
    │  (caller)   │     │   DataLister    │     │ (MongoDB/memory)│
    └─────────────┘     └─────────────────┘     └─────────────────┘

Invariants:
    - All state lives in the document store
    - No in-process locks; concurrency relies on single-document atomic
      operations plus compensating writes
    - The sentinel is never visible to data listing or counting
    - @created_on is never changed after creation

How to change safely:
    - Keep the store protocol minimal; both backends must implement it
    - Re-run the race and rollback integration tests after any change to
      meta/metadata_manager.py

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
