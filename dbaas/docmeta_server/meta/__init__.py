"""
Meta module for DocMeta - collection metadata and data listing.

This module handles:
- The sentinel record holding each collection's metadata
- ETag issuance and timestamp derivation
- Optimistic-concurrency checked collection deletion
- Data-record listing that never exposes the sentinel

Everything here is stateless; the document store passed in holds all state.

Invariants:
    - One sentinel per collection, addressed by a reserved _id
    - @created_on survives every later write
    - Every write stamps a fresh, time-ordered @etag
    - Sentinel and data filters partition a collection

How to change safely:
    - Keep partitioning logic inside sentinel.py
    - Run the forced-race integration tests after touching the upsert path
"""

from .etag import etag_timestamp, format_timestamp, new_etag, parse_etag
from .listing import DataLister, parse_sort
from .metadata_manager import MetadataManager, PendingCorrection, UpsertStage
from .outcomes import DeleteResult, MetadataOutcome, UpsertResult
from .sentinel import SENTINEL_ID, data_filter, is_sentinel, sentinel_filter

__all__ = [
    "MetadataManager",
    "PendingCorrection",
    "UpsertStage",
    "DataLister",
    "parse_sort",
    "MetadataOutcome",
    "UpsertResult",
    "DeleteResult",
    "new_etag",
    "parse_etag",
    "etag_timestamp",
    "format_timestamp",
    "SENTINEL_ID",
    "sentinel_filter",
    "data_filter",
    "is_sentinel",
]
