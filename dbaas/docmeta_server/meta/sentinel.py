"""
The sentinel (metadata) record and the filters that partition a collection.

Each collection holds at most one document whose _id is the reserved
SENTINEL_ID. It carries collection-level metadata; every other document
is a data record. The two filters below partition a collection with no
overlap, and are the only place that partition is expressed.
"""

from __future__ import annotations

from typing import Any, Mapping

from .etag import etag_timestamp, format_timestamp

SENTINEL_ID = "@metadata"

ID_FIELD = "_id"
CREATED_ON_FIELD = "@created_on"
ETAG_FIELD = "@etag"
LAST_UPDATED_FIELD = "@lastupdated_on"

# Never accepted from callers
RESERVED_FIELDS = frozenset({ID_FIELD, CREATED_ON_FIELD, ETAG_FIELD, LAST_UPDATED_FIELD})

# @created_on guess of a writer that saw no sentinel. Sorts after every real
# timestamp, so correcting with $min always replaces it.
PENDING_CREATED_ON = "9999-12-31T23:59:59Z"


def sentinel_filter() -> dict[str, Any]:
    """Filter matching only the sentinel record."""
    return {ID_FIELD: SENTINEL_ID}


def data_filter() -> dict[str, Any]:
    """Filter matching every record except the sentinel."""
    return {ID_FIELD: {"$ne": SENTINEL_ID}}


def is_sentinel(document: Mapping[str, Any] | None) -> bool:
    """Whether a document is the sentinel record."""
    return document is not None and document.get(ID_FIELD) == SENTINEL_ID


def user_properties(payload: Mapping[str, Any] | None) -> dict[str, Any]:
    """Copy a caller payload without any reserved field."""
    if not payload:
        return {}
    return {k: v for k, v in payload.items() if k not in RESERVED_FIELDS}


def decorate_last_updated(document: dict[str, Any]) -> dict[str, Any]:
    """Add @lastupdated_on derived from the document's own @etag.

    Documents without a well-formed @etag are returned unchanged.
    """
    when = etag_timestamp(document.get(ETAG_FIELD))
    if when is not None:
        document[LAST_UPDATED_FIELD] = format_timestamp(when)
    return document
